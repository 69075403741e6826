"""
tests/test_config_and_cli.py -- Settings policy and the operator CLI in main.py.

Settings are constructed directly (not via get_settings) so each test sees
exactly the values it passes. The CLI tests point DATABASE_URL at a private
in-memory database and clear the settings cache around each run.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

import main as cli
from auth.models import RefreshToken, Role
from auth.store import AccountStore
from auth.tokens import verify_password
from core.config import Settings, get_settings


class TestSettings:
    def test_debug_generates_secret_key(self):
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_secret_key(self):
        with pytest.raises(ValidationError):
            Settings(debug=False, secret_key="")

    def test_short_secret_key_rejected(self):
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="too-short")

    def test_defaults(self):
        settings = Settings(debug=True)
        assert settings.access_token_expire_seconds == 3600
        assert settings.refresh_token_expire_days == 7
        assert settings.password_reset_expire_minutes == 15

    def test_list_properties_split_and_strip(self):
        settings = Settings(debug=True, cors_origins="https://a.example, https://b.example ,", allowed_hosts="*")
        assert settings.cors_origin_list == ["https://a.example", "https://b.example"]
        assert settings.allowed_host_list == ["*"]


def _create_args(*extra: str) -> list[str]:
    return ["create-master", "--email", "root@example.com", "--name", "Ada", "--last-name", "L", *extra]


@pytest.fixture()
def cli_db(monkeypatch):
    """A shared-memory DB URL kept alive by an open store for the test's duration."""
    url = f"sqlite:///file:test_cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    keeper = AccountStore(url)
    monkeypatch.setenv("DATABASE_URL", url)
    get_settings.cache_clear()
    yield keeper
    get_settings.cache_clear()
    keeper.close()


class TestCli:
    def test_create_master_with_password_flag(self, cli_db, capsys):
        code = cli.main(_create_args("--password", "pw-long-enough"))
        assert code == 0
        account = cli_db.get_by_email("root@example.com")
        assert account.role is Role.MASTER
        assert account.created_by is None
        assert verify_password("pw-long-enough", account.password_hash)
        assert "MASTER account" in capsys.readouterr().out

    def test_create_master_prompts_for_password(self, cli_db, monkeypatch):
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "prompted-password")
        code = cli.main(_create_args())
        assert code == 0
        assert verify_password("prompted-password", cli_db.get_by_email("root@example.com").password_hash)

    def test_mismatched_prompt_fails(self, cli_db, monkeypatch):
        answers = iter(["first-password", "second-password"])
        monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
        code = cli.main(_create_args())
        assert code == 1
        assert cli_db.get_by_email("root@example.com") is None

    def test_short_password_fails(self, cli_db):
        code = cli.main(_create_args("--password", "short"))
        assert code == 1

    def test_long_password_accepted(self, cli_db):
        password = "p" * 100
        assert cli.main(_create_args("--password", password)) == 0
        assert verify_password(password, cli_db.get_by_email("root@example.com").password_hash)


    def test_duplicate_email_fails(self, cli_db):
        args = _create_args("--password", "pw-long-enough")
        assert cli.main(args) == 0
        assert cli.main(args) == 1

    def test_purge_tokens(self, cli_db, capsys):
        account_id = cli.create_master(cli_db, "root@example.com", "A", "L", "pw-long-enough")
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        cli_db.save_refresh_token(RefreshToken(account_id, "expired-hash", past))
        assert cli.main(["purge-tokens"]) == 0
        assert "1 expired refresh token(s) removed" in capsys.readouterr().out

    def test_no_command_prints_help(self, cli_db):
        assert cli.main([]) == 2
