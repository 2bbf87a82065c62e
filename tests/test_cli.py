"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from raindrop_sync import raindrop_sync as cli_module
from raindrop_sync.raindrop_sync import MISSING_TOKEN_HELP, cli, format_last_sync
from raindrop_sync.utils import sync as sync_module
from raindrop_sync.utils.exceptions import RaindropAuthError
from raindrop_sync.utils.state_manager import IMPORTED_IDS, IdentityStore
from raindrop_sync.utils.sync import SyncResult


@pytest.fixture
def runner():
    return CliRunner(env={"RAINDROP_API_TOKEN": None, "RAINDROP_SYNC_VAULT": None})


@pytest.fixture
def base_args(tmp_path, monkeypatch):
    monkeypatch.setattr(
        sync_module,
        "get_default_lock_file_path",
        lambda: str(tmp_path / "raindrop-sync.lock"),
    )
    return [
        "--vault-path",
        str(tmp_path / "vault"),
        "--sync-state-path",
        str(tmp_path / "sync_state.json"),
        "--log-file",
        str(tmp_path / "debug.log"),
    ]


class StubSync:
    """Replaces RaindropSync in the CLI module."""

    result = SyncResult()

    def __init__(self, config):
        self.config = config

    def perform_sync(self):
        return self.result


def test_sync_without_token_explains_how_to_get_one(runner, base_args):
    result = runner.invoke(cli, base_args + ["sync"])

    assert result.exit_code == 1
    assert MISSING_TOKEN_HELP in result.output


def test_sync_reports_imports(runner, base_args, monkeypatch):
    monkeypatch.setattr(StubSync, "result", SyncResult(imported=3, archived=1))
    monkeypatch.setattr(cli_module, "RaindropSync", StubSync)

    result = runner.invoke(cli, base_args + ["--api-token", "secret", "sync"])

    assert result.exit_code == 0, result.output
    assert "Imported 3 new highlights." in result.output
    assert "Archived 1 article(s)." in result.output


def test_sync_reports_partial_failures(runner, base_args, monkeypatch):
    partial = SyncResult(imported=2, errors=['Failed to import "B": disk full'])
    monkeypatch.setattr(StubSync, "result", partial)
    monkeypatch.setattr(cli_module, "RaindropSync", StubSync)

    result = runner.invoke(cli, base_args + ["--api-token", "secret", "sync"])

    assert result.exit_code == 0, result.output
    assert "Imported 2 highlights with 1 error(s)." in result.output
    assert 'Failed to import "B": disk full' in result.output


def test_failed_sync_exits_with_the_error(runner, base_args, monkeypatch):
    error = RaindropAuthError("Invalid Raindrop.io API token.")
    failed = SyncResult(errors=[str(error)], failed=True, exception=error)
    monkeypatch.setattr(StubSync, "result", failed)
    monkeypatch.setattr(cli_module, "RaindropSync", StubSync)

    result = runner.invoke(cli, base_args + ["--api-token", "secret", "sync"])
    assert result.exit_code == 1
    assert "Sync failed: Invalid Raindrop.io API token." in result.output

    result = runner.invoke(cli, base_args + ["--api-token", "secret", "sync", "--debug"])
    assert isinstance(result.exception, RaindropAuthError)


def test_token_is_read_from_the_environment(base_args, monkeypatch):
    monkeypatch.setattr(StubSync, "result", SyncResult())
    monkeypatch.setattr(cli_module, "RaindropSync", StubSync)
    runner = CliRunner(env={"RAINDROP_API_TOKEN": "from-env"})

    result = runner.invoke(cli, base_args + ["sync"])

    assert result.exit_code == 0, result.output
    assert "Imported 0 new highlights." in result.output


def test_status_before_any_sync(runner, base_args):
    result = runner.invoke(cli, base_args + ["status"])

    assert result.exit_code == 0, result.output
    assert "No token set" in result.output
    assert "Last sync: Never" in result.output
    assert "Imported highlights: 0" in result.output


def test_status_counts_imported_highlights(runner, base_args, tmp_path):
    IdentityStore(tmp_path / "sync_state.json").merge(IMPORTED_IDS, {"h1": "1", "h2": "1"})

    result = runner.invoke(cli, base_args + ["--api-token", "secret", "status"])

    assert result.exit_code == 0, result.output
    assert "Status: Token configured" in result.output
    assert "Imported highlights: 2" in result.output


def test_watch_refuses_a_disabled_interval(runner, base_args):
    result = runner.invoke(
        cli, base_args + ["--api-token", "secret", "--sync-interval", "0", "watch"]
    )

    assert result.exit_code == 1
    assert "Automatic sync is disabled" in result.output


def test_negative_interval_is_rejected(runner, base_args):
    result = runner.invoke(cli, base_args + ["--sync-interval=-5", "status"])

    assert result.exit_code == 2


def test_validate_token(runner, base_args, monkeypatch):
    monkeypatch.setattr(
        cli_module.RaindropManager, "validate_token", lambda self, token: token == "good"
    )

    ok = runner.invoke(cli, base_args + ["--api-token", "good", "validate-token"])
    bad = runner.invoke(cli, base_args + ["--api-token", "bad", "validate-token"])

    assert ok.exit_code == 0
    assert "Raindrop.io token is valid!" in ok.output
    assert bad.exit_code == 1
    assert "Invalid token" in bad.output


def test_format_last_sync():
    assert format_last_sync(None) == "Never"
    assert format_last_sync("not a date") == "not a date"
    assert format_last_sync("2024-01-01T12:00:00+00:00").startswith("2024-01-0")
