"""
core/errors.py -- Exception taxonomy for the identity core.

Every exception carries an HTTP status_code and a stable error_code. The API
layer renders them into the shared error envelope; nothing below api/ knows
about HTTP beyond these two class attributes.

Token failures come in two tiers:
  TokenError subclasses (MalformedTokenError, SignatureInvalidError,
      ExpiredTokenError) are raised by the codec and describe exactly what
      went wrong. They never leave the verifier.
  InvalidTokenError is the single externally visible token failure. The
      verifier folds every sub-failure -- including "user missing", "session
      missing" and "role too low" -- into it so callers cannot probe which
      check rejected a token.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for identity-core exceptions mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        # Default message is the class docstring, so subclasses need no __init__.
        self.message = message or (type(self).__doc__ or "").strip()
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Codec-level token failures (internal)
# ---------------------------------------------------------------------------


class TokenError(IdentityError):
    """Token could not be accepted."""

    status_code = 401
    error_code = "invalid_token"


class MalformedTokenError(TokenError):
    """Token structure could not be parsed."""


class SignatureInvalidError(TokenError):
    """Token signature does not match the session secret."""


class ExpiredTokenError(TokenError):
    """Token is past its exp claim."""


# ---------------------------------------------------------------------------
# Externally visible failures
# ---------------------------------------------------------------------------


class InvalidTokenError(IdentityError):
    """Invalid token."""

    status_code = 401
    error_code = "invalid_token"


class BadCredentialsError(IdentityError):
    """Invalid username or password."""

    status_code = 401
    error_code = "bad_credentials"


class UnauthorizedError(IdentityError):
    """Not authorized to access this resource."""

    # The API layer overrides this with Settings.unauthorized_status (401 or 403).
    status_code = 403
    error_code = "forbidden"


class ObjectNotFoundError(IdentityError):
    """Object not found."""

    status_code = 404
    error_code = "not_found"


class ConflictError(IdentityError):
    """Object already exists."""

    status_code = 409
    error_code = "conflict"


class InvalidPasswordError(IdentityError):
    """Password must be at most 72 bytes when encoded as UTF-8."""

    status_code = 422
    error_code = "invalid_password"


class PersistenceError(IdentityError):
    """Storage backend failed."""

    status_code = 503
    error_code = "persistence_error"


__all__ = [
    "IdentityError",
    "TokenError",
    "MalformedTokenError",
    "SignatureInvalidError",
    "ExpiredTokenError",
    "InvalidTokenError",
    "BadCredentialsError",
    "UnauthorizedError",
    "ObjectNotFoundError",
    "ConflictError",
    "InvalidPasswordError",
    "PersistenceError",
]
