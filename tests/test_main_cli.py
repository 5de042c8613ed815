from pathlib import Path

import pytest

from main import _parse_args, main


@pytest.fixture()
def db_env(tmp_path: Path, monkeypatch) -> Path:
    db_path = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("PORTAL_DB_PATH", str(db_path))
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    return db_path


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_create_api_key_arguments() -> None:
    args = _parse_args(["create-api-key", "Web", "--service", "web-frontend", "--expires-days", "30"])
    assert args.command == "create-api-key"
    assert args.name == "Web"
    assert args.environment == "production"
    assert args.expires_days == 30


def test_create_user_roles_are_repeatable() -> None:
    args = _parse_args(["create-user", "Admin", "admin@example.com", "--role", "admin", "--role", "premium"])
    assert args.roles == ["admin", "premium"]


def test_init_db_seeds_development_keys(db_env: Path, capsys) -> None:
    assert main(["init-db", "--seed-api-keys"]) == 0
    assert db_env.exists()
    assert "Seeded 3 development API key(s)." in capsys.readouterr().out

    assert main(["list-api-keys", "--service", "test"]) == 0
    output = capsys.readouterr().out
    assert "1 API key(s) found:" in output
    assert "Test (Development)" in output


def test_create_and_revoke_api_key(db_env: Path, capsys) -> None:
    assert main(["create-api-key", "Partner", "--service", "partner", "--environment", "staging"]) == 0
    output = capsys.readouterr().out
    key_id = output.split("Created API key ", 1)[1].split(" ", 1)[0]

    assert main(["revoke-api-key", key_id]) == 0
    assert f"API key {key_id} revoked." in capsys.readouterr().out

    assert main(["list-api-keys"]) == 0
    assert "revoked" in capsys.readouterr().out


def test_revoke_unknown_api_key_fails(db_env: Path, capsys) -> None:
    assert main(["revoke-api-key", "missing"]) == 1
    assert "No API key with id 'missing' found." in capsys.readouterr().err


def test_create_user_with_prompted_password(db_env: Path, capsys, monkeypatch) -> None:
    monkeypatch.setattr("main.getpass", lambda prompt="": "long-enough-password")

    assert main(["create-user", "Admin", "admin@example.com", "--role", "admin"]) == 0
    assert "Created user" in capsys.readouterr().out

    assert main(["create-user", "Admin", "admin@example.com"]) == 1


def test_maintenance_commands(db_env: Path, capsys) -> None:
    assert main(["check-expired-trials", "--dry-run"]) == 0
    assert "Would downgrade 0 user(s)" in capsys.readouterr().out

    assert main(["prune-tokens"]) == 0
    output = capsys.readouterr().out
    assert "Removed 0 expired token(s)." in output
    assert "Removed 0 expired password reset token(s)." in output
