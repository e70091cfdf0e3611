"""Tests for the CLI commands and the MCP tool server."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import patch

import pytest

from cloud_sessions.context import AppContext
from cloud_sessions.lifecycle.errors import CredentialAcquisitionError
from cloud_sessions.main import build_parser
from cloud_sessions.mcp.session_server import SessionMCPServer
from cloud_sessions.models.session import AwsIamRoleFederatedSession, SessionStatus
from cloud_sessions.prompt.cli import run_cli
from cloud_sessions.settings import Settings


@pytest.fixture
def app_context(registry, workspace, vault_session) -> AppContext:
    return AppContext(settings=Settings(), vault_session=vault_session, workspace=workspace, registry=registry)


def _run(app_context: AppContext, monkeypatch: pytest.MonkeyPatch, *argv: str) -> int:
    monkeypatch.setenv("VAULT_TOKEN", "s.fake-token")
    args = build_parser().parse_args(list(argv))
    with patch("cloud_sessions.prompt.cli.build_context", return_value=app_context):
        return run_cli(args, app_context.settings)


class TestCli:
    def test_add_and_list(self, app_context, workspace, monkeypatch, capsys) -> None:
        code = _run(
            app_context, monkeypatch,
            "add", "--type", "awsIamRoleFederated", "--name", "staging",
            "--region", "eu-west-1", "--vault-role", "staging",
            "--role-arn", "arn:aws:iam::111122223333:role/Deploy",
        )
        assert code == 0
        session = workspace.sessions()[0]
        assert session.session_name == "staging"
        assert session.profile_id == workspace.get_default_profile_id()

        assert _run(app_context, monkeypatch, "list") == 0
        assert "staging" in capsys.readouterr().out

    def test_add_rejects_field_of_other_type(self, app_context, workspace, monkeypatch) -> None:
        code = _run(app_context, monkeypatch, "add", "--type", "azure", "--name", "x", "--role-arn", "arn")
        assert code == 1
        assert workspace.sessions() == []

    def test_add_rejects_malformed_role_arn(self, app_context, workspace, monkeypatch, capsys) -> None:
        code = _run(
            app_context, monkeypatch,
            "add", "--type", "awsIamRoleFederated", "--name", "bad",
            "--vault-role", "staging", "--role-arn", "not-an-arn",
        )
        assert code == 1
        assert "Not an IAM role ARN" in capsys.readouterr().out
        assert workspace.sessions() == []

    def test_info_tolerates_stored_malformed_arn(self, app_context, workspace, monkeypatch, capsys) -> None:
        workspace.add_session(
            AwsIamRoleFederatedSession(session_id="bad", session_name="bad", role_arn="not-an-arn", vault_role="x")
        )
        assert _run(app_context, monkeypatch, "info", "bad") == 0
        assert "invalid role ARN" in capsys.readouterr().out

    def test_start_by_name(self, app_context, workspace, federated_session, monkeypatch) -> None:
        assert _run(app_context, monkeypatch, "start", "prod-admin") == 0
        assert workspace.get_session("sess-1").status is SessionStatus.ACTIVE

    def test_unknown_session_is_an_error(self, app_context, monkeypatch, capsys) -> None:
        assert _run(app_context, monkeypatch, "stop", "nope") == 1
        assert "Session not found" in capsys.readouterr().out

    def test_delete_without_confirmation(self, app_context, workspace, federated_session, add_chained, monkeypatch) -> None:
        add_chained("c1", "sess-1")
        assert _run(app_context, monkeypatch, "delete", "sess-1", "--yes", "--keep-trusters") == 0
        assert [s.session_id for s in workspace.sessions()] == ["c1"]

    def test_delete_declined(self, app_context, workspace, federated_session, monkeypatch) -> None:
        with patch("cloud_sessions.prompt.cli.Confirm.ask", return_value=False):
            assert _run(app_context, monkeypatch, "delete", "sess-1") == 0
        assert workspace.find_session("sess-1") is not None

    def test_region_outside_allowed_list(self, app_context, workspace, federated_session, monkeypatch) -> None:
        assert _run(app_context, monkeypatch, "region", "sess-1", "westeurope") == 1
        assert _run(app_context, monkeypatch, "region", "sess-1", "eu-west-2") == 0
        assert workspace.get_session("sess-1").region == "eu-west-2"

    def test_profile_created_on_demand(self, app_context, workspace, federated_session, monkeypatch) -> None:
        assert _run(app_context, monkeypatch, "profile", "sess-1", "ops") == 0
        names = {p.name for p in workspace.profiles()}
        assert names == {"default", "ops"}

    def test_credentials_export(self, app_context, federated_session, monkeypatch, capsys) -> None:
        assert _run(app_context, monkeypatch, "credentials", "sess-1") == 0
        out = capsys.readouterr().out
        assert "export AWS_ACCESS_KEY_ID=ASIA1" in out
        assert "export AWS_DEFAULT_REGION=us-east-1" in out


class TestMcpServer:
    def test_tools_are_registered(self, app_context) -> None:
        names = {tool.name for tool in SessionMCPServer(app_context).list_tools()}
        assert names == {"list_sessions", "start_session", "stop_session", "change_region", "generate_credentials"}

    def test_start_and_stop(self, app_context, workspace, federated_session) -> None:
        server = SessionMCPServer(app_context)

        started = json.loads(asyncio.run(server.call("start_session", {"session_id": "sess-1"}))[0].text)
        assert started == {"status": "active", "session_id": "sess-1"}

        stopped = json.loads(asyncio.run(server.call("stop_session", {"session_id": "sess-1"}))[0].text)
        assert stopped["status"] == "inactive"

    def test_list_sessions(self, app_context, federated_session, azure_session) -> None:
        payload = json.loads(asyncio.run(SessionMCPServer(app_context).call("list_sessions", {}))[0].text)
        assert [s["sessionId"] for s in payload["sessions"]] == ["sess-1", "az-1"]

    def test_lifecycle_error_is_returned(self, app_context, federated_session, aws_broker) -> None:
        aws_broker.get_credentials.side_effect = CredentialAcquisitionError("denied")
        payload = json.loads(
            asyncio.run(SessionMCPServer(app_context).call("start_session", {"session_id": "sess-1"}))[0].text
        )
        assert payload["error"] == "CredentialAcquisitionError"

    def test_change_region(self, app_context, workspace, azure_session) -> None:
        payload = json.loads(asyncio.run(
            SessionMCPServer(app_context).call("change_region", {"session_id": "az-1", "region": "northeurope"})
        )[0].text)
        assert payload["region"] == "northeurope"
        assert payload["restarted"] is False

    def test_unknown_tool(self, app_context) -> None:
        with pytest.raises(ValueError, match="Unknown tool"):
            asyncio.run(SessionMCPServer(app_context).call("drop_tables", {}))
