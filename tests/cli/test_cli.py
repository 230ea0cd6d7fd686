"""Tests for the QueryDesk CLI."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from querydesk.cli.main import app
from querydesk.orchestrator.loop import OrchestrationLoop
from querydesk.services.tool_gateway import EXECUTE_SQL
from tests.helpers import FakeGateway, ScriptedModel, text_step, tool_step
from tests.helpers.constants import TEST_ACCESS_TOKEN, TEST_BASE_URL, TEST_PASSWORD, TEST_REF

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """querydesk.yaml in the working directory using a file-backed store."""
    path = tmp_path / "querydesk.yaml"
    path.write_text(yaml.safe_dump({
        "credentials": {
            "backend": "file",
            "app_secret": "cli-test-secret",
            "file_path": str(tmp_path / "credentials.json"),
        },
    }))
    return path


def _loop_builder(gateway: FakeGateway, model: ScriptedModel):
    """Replacement for OrchestrationLoop(cfg, store, connections) using doubles."""
    connections = MagicMock()
    connections.get_connection_string = AsyncMock(return_value=TEST_BASE_URL)
    connections.get_region = AsyncMock(return_value=None)

    def build(cfg, store, _connections):
        return OrchestrationLoop(
            cfg, store, connections,
            gateway_factory=gateway.factory,
            model_factory=model.factory,
            launcher_probe=AsyncMock(return_value="10.0.0"),
        )

    return build


class TestCredentialsCommands:
    def test_set_and_check_password(self, config_file):
        result = runner.invoke(app, ["credentials", "set-password", TEST_REF, "--password", TEST_PASSWORD])
        assert result.exit_code == 0, result.output
        assert f"Password stored for {TEST_REF}" in result.output

        result = runner.invoke(app, ["credentials", "has-password", TEST_REF])
        assert result.exit_code == 0

    def test_has_password_missing(self, config_file):
        result = runner.invoke(app, ["credentials", "has-password", "other"])
        assert result.exit_code == 1

    def test_password_file_is_encrypted(self, config_file, tmp_path):
        runner.invoke(app, ["credentials", "set-password", TEST_REF, "--password", TEST_PASSWORD])
        assert TEST_PASSWORD not in (tmp_path / "credentials.json").read_text()

    def test_set_api_key(self, config_file):
        result = runner.invoke(app, ["credentials", "set-api-key", "--key", "sk-ant-abc"])
        assert result.exit_code == 0
        result = runner.invoke(app, ["credentials", "list"])
        assert "API key: set" in result.output

    def test_set_api_key_wrong_prefix(self, config_file):
        result = runner.invoke(app, ["credentials", "set-api-key", "--key", "abc"])
        assert result.exit_code == 1
        assert "sk-ant-" in result.output

    def test_list_and_reset(self, config_file):
        runner.invoke(app, ["credentials", "set-password", "proj-b", "--password", "x"])
        runner.invoke(app, ["credentials", "set-password", "proj-a", "--password", "y"])

        result = runner.invoke(app, ["credentials", "list"])
        assert result.output.index("proj-a") < result.output.index("proj-b")

        result = runner.invoke(app, ["credentials", "reset", "--yes"])
        assert result.exit_code == 0
        assert "No project passwords stored" in runner.invoke(app, ["credentials", "list"]).output


class TestConfigCommands:
    def test_show(self, config_file):
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "backend: file" in result.output
        assert "cli-test-secret" not in result.output
        assert "aws-0-us-east-2.pooler.supabase.com" in result.output

    def test_missing_explicit_config(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "config", "show"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestAsk:
    def test_answer_rendered(self, config_file):
        runner.invoke(app, ["credentials", "set-password", TEST_REF, "--password", TEST_PASSWORD])
        gateway = FakeGateway(responses={EXECUTE_SQL: [{"type": "text", "text": '[{"count": 42}]'}]})
        model = ScriptedModel([
            tool_step((EXECUTE_SQL, {"project_id": TEST_REF, "query": "SELECT count(*) FROM users"})),
            text_step("You have 42 users."),
        ])

        with patch("querydesk.orchestrator.loop.OrchestrationLoop", _loop_builder(gateway, model)):
            result = runner.invoke(app, [
                "ask", "How many users?", "-p", TEST_REF,
                "--access-token", TEST_ACCESS_TOKEN, "--api-key", "sk-ant-abc", "--json",
            ])

        assert result.exit_code == 0, result.output
        assert '"type": "conversation-summary"' in result.output
        assert "You have 42 users." in result.output
        assert gateway.close_count == 1

    def test_missing_password_exits(self, config_file):
        model = ScriptedModel([text_step("unused")])
        with patch("querydesk.orchestrator.loop.OrchestrationLoop", _loop_builder(FakeGateway(), model)):
            result = runner.invoke(app, [
                "ask", "How many users?", "-p", TEST_REF,
                "--access-token", TEST_ACCESS_TOKEN, "--api-key", "sk-ant-abc",
            ])

        assert result.exit_code == 1
        assert "E-2002" in result.output

    def test_no_api_key(self, config_file, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result = runner.invoke(app, ["ask", "q", "-p", TEST_REF, "--access-token", TEST_ACCESS_TOKEN])
        assert result.exit_code == 1
        assert "No API key" in result.output

    def test_error_event_exits_nonzero(self, config_file):
        from querydesk.errors import ProviderError

        runner.invoke(app, ["credentials", "set-password", TEST_REF, "--password", TEST_PASSWORD])
        model = ScriptedModel([], error=ProviderError("The LLM provider rejected the API key."))

        with patch("querydesk.orchestrator.loop.OrchestrationLoop", _loop_builder(FakeGateway(), model)):
            result = runner.invoke(app, [
                "ask", "q", "-p", TEST_REF, "--access-token", TEST_ACCESS_TOKEN, "--api-key", "sk-ant-abc",
            ])

        assert result.exit_code == 1
        assert "rejected the API key" in result.output
