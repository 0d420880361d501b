"""
auth/tokens.py -- Session token codec and secret generation.

Security design decisions:
  JWT: python-jose with HS256. Unlike a single-key deployment, every session
       signs its token with its own secret. The codec therefore never holds a
       key -- callers pass the secret per call.

  Two decode paths:
       decode_unverified() parses the token and checks well-formedness and
       expiry only. It exists so the verifier can learn which session a token
       claims to belong to and fetch that session's secret. Its output must
       never be trusted on its own.
       decode_verified() checks the signature against a given secret.

  Secrets: secrets.token_hex(n) gives n random bytes as 2n hex characters.
       Hex keeps the secret storable as plain text while carrying the full
       entropy into the HMAC key.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
import time
from typing import Any

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from core.errors import ExpiredTokenError, MalformedTokenError, SignatureInvalidError

_ALGORITHM = "HS256"


def generate_session_secret(nbytes: int = 32) -> str:
    """Return a fresh random session secret (hex encoded)."""
    return secrets.token_hex(nbytes)


class TokenCodec:
    """Encode and decode HS256 session tokens.

    Usage:
        codec = TokenCodec()
        token = codec.encode({"user_id": uid, "session_id": sid, "exp": exp}, secret)
        claims = codec.decode_unverified(token)   # no signature check
        claims = codec.decode_verified(token, secret)
    """

    def __init__(self, algorithm: str = _ALGORITHM) -> None:
        self.algorithm = algorithm

    def encode(self, claims: dict[str, Any], secret: str) -> str:
        """Serialize claims and sign them with secret."""
        return jwt.encode(claims, secret, algorithm=self.algorithm)

    def decode_unverified(self, token: str) -> dict[str, Any]:
        """Parse token claims without checking the signature.

        Raises:
            MalformedTokenError: token is not a parsable JWT with an object payload,
                or its exp claim is not numeric.
            ExpiredTokenError: exp claim is present and in the past.
        """
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Token is empty.")
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError(f"Token cannot be decoded: {exc}") from exc
        if not isinstance(claims, dict):
            raise MalformedTokenError("Token payload is not an object.")
        _check_expiry(claims)
        return claims

    def decode_verified(self, token: str, secret: str) -> dict[str, Any]:
        """Decode token and verify its signature against secret.

        Raises:
            ExpiredTokenError: signature is valid but exp is in the past.
            MalformedTokenError: registered claims (exp, iat) have the wrong type.
            SignatureInvalidError: any other verification failure.
        """
        try:
            return jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredTokenError("Token has expired.") from exc
        except JWTClaimsError as exc:
            raise MalformedTokenError(f"Token claims are invalid: {exc}") from exc
        except JWTError as exc:
            raise SignatureInvalidError(f"Token signature cannot be verified: {exc}") from exc


def _check_expiry(claims: dict[str, Any]) -> None:
    exp = claims.get("exp")
    if exp is None:
        return
    # bool is an int subclass but never a timestamp.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise MalformedTokenError("Token exp claim is not numeric.")
    if exp < time.time():
        raise ExpiredTokenError("Token has expired.")
