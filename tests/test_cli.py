"""Tests for the main.py administration CLI.

_build_service is patched to hand the commands an in-memory IdentityService,
so no database file is touched.
"""

from unittest.mock import MagicMock

import pytest

import main as cli
from auth.models import Role
from auth.service import IdentityService


@pytest.fixture
def run(monkeypatch, service):
    engine = MagicMock()
    monkeypatch.setattr(cli, "_build_service", lambda: (service, engine))

    def invoke(*argv: str) -> int:
        return cli.main(list(argv))

    invoke.engine = engine
    return invoke


class TestCreateUser:
    def test_create_user(self, run, service, capsys) -> None:
        assert run("create-user", "alice", "--password", "pw") == 0
        user = service.user_store.get_by_username("alice")
        assert user.role is Role.USER
        assert "Created user alice" in capsys.readouterr().out

    def test_create_admin(self, run, service) -> None:
        run("create-user", "root", "--password", "pw", "--role", "admin")
        assert service.user_store.get_by_username("root").role is Role.ADMIN

    def test_duplicate_reports_error(self, run, capsys) -> None:
        run("create-user", "alice", "--password", "pw")
        assert run("create-user", "alice", "--password", "pw") == 1
        assert "[!]" in capsys.readouterr().out

    def test_over_long_password_reports_error(self, run, service, capsys) -> None:
        assert run("create-user", "alice", "--password", "é" * 40) == 1
        assert "[!]" in capsys.readouterr().out
        assert service.user_store.get_by_username("alice") is None

    def test_engine_disposed(self, run) -> None:
        run("create-user", "alice", "--password", "pw")
        run.engine.dispose.assert_called_once()


class TestIssueAndVerify:
    def test_issue_prints_token_that_verifies(self, run, service, make_user, capsys) -> None:
        make_user("alice")
        assert run("issue", "alice") == 0
        token = capsys.readouterr().out.strip().splitlines()[-1]
        assert run("verify", token) == 0
        assert "Valid: user alice" in capsys.readouterr().out

    def test_issue_unknown_user(self, run, capsys) -> None:
        assert run("issue", "nobody") == 1
        assert "No user named" in capsys.readouterr().out

    def test_verify_role_threshold(self, run, service, make_user, capsys) -> None:
        session = service.issue(make_user("alice"))
        assert run("verify", session.token, "--role", "admin") == 1
        assert "Invalid token" in capsys.readouterr().out

    def test_verify_garbage(self, run) -> None:
        assert run("verify", "garbage") == 1


class TestPurgeSessions:
    def test_purge_sessions(self, run, user_store, session_store, make_user, capsys) -> None:
        IdentityService(user_store, session_store, expire_seconds=-1).issue(make_user())
        assert run("purge-sessions") == 0
        assert "Purged 1 expired session(s)." in capsys.readouterr().out
