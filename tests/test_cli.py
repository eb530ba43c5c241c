"""Tests for the leadauto command line."""

import json
import pytest
import tempfile
from pathlib import Path

from click.testing import CliRunner

from lead_automation.cli.main import cli
from lead_automation.storage.database import AutomationDatabase


@pytest.fixture
def temp_data_dir(monkeypatch):
    """Create temporary data directory used as the app home."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("LEAD_AUTOMATION_HOME", tmpdir)
        monkeypatch.delenv("LEAD_AUTOMATION_TZ", raising=False)
        yield Path(tmpdir)


@pytest.fixture
def invoke(temp_data_dir):
    runner = CliRunner()
    db_path = str(temp_data_dir / "cli.db")

    def _invoke(*args):
        return runner.invoke(cli, ["--db", db_path, "--tenant", "acme", *args], obj={})

    return _invoke


class TestCli:
    """Smoke tests for the main commands."""

    def test_route_lead(self, invoke, temp_data_dir):
        db_path = temp_data_dir / "cli.db"
        assert invoke("rep", "add", "sarah", "--name", "Sarah Johnson").exit_code == 0
        assert invoke(
            "lead", "add", "1001",
            "--attr", "first_name=Ana",
            "--attr", "email=ana@example.com",
            "--attr", "budget=65000",
        ).exit_code == 0

        result = invoke("route", "1001")

        assert result.exit_code == 0, result.output
        assert "Sarah Johnson" in result.output

        db = AutomationDatabase(db_path)
        assert db.get_lead("acme", "1001").assignee == "sarah"
        assert [a.action_type.value for a in db.list_for_lead("acme", "1001")] == ["send_email"]

    def test_rule_add_and_test(self, invoke):
        invoke("rep", "add", "mike")
        invoke("lead", "add", "1001", "--attr", "budget=65000")
        result = invoke(
            "rule", "add", "--id", "big", "--name", "Big budget",
            "--condition", "budget:greater_than:50000",
            "--assign", "user", "--to", "mike",
        )
        assert result.exit_code == 0, result.output

        result = invoke("rule", "test", "1001")
        assert result.exit_code == 0
        assert "Big budget" in result.output

    def test_missing_lead_exits_non_zero(self, invoke):
        result = invoke("suggest", "404")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_render_template(self, invoke):
        result = invoke("templates", "render", "initial_inquiry", "--channel", "sms",
                        "--var", "customer_name=Ana")
        assert result.exit_code == 0
        assert "Hi Ana!" in result.output
        assert "Missing variables" in result.output

    def test_config_set_timezone(self, invoke, temp_data_dir):
        assert invoke("config", "set", "timezone", "America/Denver").exit_code == 0
        saved = json.loads((temp_data_dir / "config.json").read_text())
        assert saved["timezone"] == "America/Denver"

        assert invoke("config", "set", "colour", "blue").exit_code == 1
