"""
Tests for the CLI interface.
"""
import os

import pytest
from typer.testing import CliRunner

from redeem_panel.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    """Point the CLI at a throwaway database through the environment."""
    monkeypatch.chdir(tmp_path)
    return {
        "DATABASE_PATH": os.path.join(str(tmp_path), "cli.db"),
        "REDEEM_EMAIL": "orders@example.com",
    }


def invoke(args, env):
    return runner.invoke(app, args, env=env)


def submit_args(key, origin="cli"):
    return [
        "submit", "--name", "Alice", "--key", key,
        "--invite", "https://discord.gg/xyz", "--origin", origin,
    ]


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self, env):
        result = invoke([], env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, env):
        result = invoke(["init"], env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output
        assert os.path.exists(env["DATABASE_PATH"])

    def test_submit_creates_pending_request(self, env):
        result = invoke(submit_args("AAA-111"), env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Request #1 created (PENDING)" in result.output

    def test_submit_duplicate_key_fails(self, env):
        invoke(submit_args("AAA-111"), env)
        result = invoke(submit_args("AAA-111", origin="other"), env)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Duplicate key" in result.output
        assert "already been used" in result.output

    def test_submit_validation_failure(self, env):
        result = invoke([
            "submit", "--name", "Alice", "--key", "bad key",
            "--invite", "http://discord.gg/xyz",
        ], env)

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Validation failed" in result.output
        assert "valid HTTPS URL" in result.output

    def test_submit_with_user_applies_cooldown(self, env):
        first = invoke(submit_args("K1") + ["--user", "4242"], env)
        second = invoke(submit_args("K2") + ["--user", "4242"], env)

        assert first.exit_code == EXIT_CODE_PASS
        assert second.exit_code == EXIT_CODE_FAIL
        assert "Rate limited" in second.output

    def test_decide_approve(self, env):
        invoke(submit_args("AAA-111"), env)
        result = invoke(["decide", "1", "approve"], env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Request #1 APPROVED" in result.output

    def test_decide_twice_is_informational(self, env):
        """A second decision reports the current state and exits 0."""
        invoke(submit_args("AAA-111"), env)
        invoke(["decide", "1", "reject"], env)
        result = invoke(["decide", "1", "approve"], env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "already REJECTED" in result.output

    def test_decide_unknown_request(self, env):
        result = invoke(["decide", "9", "approve"], env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not found" in result.output

    def test_decide_invalid_decision(self, env):
        result = invoke(["decide", "1", "maybe"], env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "approve" in result.output

    def test_list_and_pending(self, env):
        invoke(submit_args("AAA-111"), env)

        listed = invoke(["list"], env)
        pending = invoke(["pending"], env)

        assert listed.exit_code == EXIT_CODE_PASS
        assert "Redeem Requests" in listed.output
        assert "Pending Requests" in pending.output

    def test_list_empty(self, env):
        result = invoke(["list", "--status", "approved"], env)
        assert "No requests found." in result.output

    def test_list_unknown_status(self, env):
        result = invoke(["list", "--status", "lost"], env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown status" in result.output

    def test_stats(self, env):
        invoke(submit_args("AAA-111"), env)
        result = invoke(["stats"], env)

        assert result.exit_code == EXIT_CODE_PASS
        assert "Redeem Panel Stats" in result.output
        assert "Used keys" in result.output

    def test_purge_cooldowns(self, env):
        result = invoke(["purge-cooldowns"], env)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Purged 0 expired cooldown(s)" in result.output

    def test_bad_config_file(self, env, tmp_path):
        result = invoke(["init", "--config", str(tmp_path / "missing.yaml")], env)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Configuration error" in result.output

    def test_bot_requires_token(self, env):
        result = invoke(["bot"], dict(env, DISCORD_TOKEN=""))
        assert result.exit_code == EXIT_CODE_FAIL
        assert "token" in result.output.lower()
