"""Tests for MCP tool wrappers, server assembly and the CLI."""

from __future__ import annotations

import asyncio
import re
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastmcp import Client
from fastmcp.exceptions import ToolError

import server
from mcp_jenkins.context import LifespanContext, MissingCredentialsError
from mcp_jenkins.items import Folder, Job
from mcp_jenkins.jenkins_api import Jenkins
from mcp_jenkins.models import Build, BuildReplay


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(status: int, text: str = "") -> requests.HTTPError:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.text = text
    return requests.HTTPError(response=resp)


def _job(last_build: int | None = None) -> Job:
    build = Build(number=last_build, url="u") if last_build is not None else None
    return Job(class_="x.WorkflowJob", name="api", url="u", fullname="team/api",
               color="blue", last_build=build)


@pytest.fixture
def jenkins():
    client = MagicMock(spec=Jenkins)
    with patch("server._jenkins", return_value=client):
        yield client


def _tool_names(read_only: bool) -> set[str]:
    async def _list():
        async with Client(server.create_server(LifespanContext(), read_only=read_only)) as client:
            return {tool.name for tool in await client.list_tools()}
    return asyncio.run(_list())


# ---------------------------------------------------------------------------
# _handle_error
# ---------------------------------------------------------------------------


class TestHandleError:
    def test_401(self):
        assert "Authentication failed (401)" in server._handle_error(_http_error(401), "get_item")

    def test_404(self):
        msg = server._handle_error(_http_error(404), "get_item")
        assert msg.startswith("[get_item] Not found (404)")

    def test_other_status_includes_body(self):
        msg = server._handle_error(_http_error(500, "x" * 400), "get_build")
        assert msg == f"[get_build] Jenkins API error 500: {'x' * 300}"

    def test_missing_credentials(self):
        msg = server._handle_error(MissingCredentialsError("no creds"), "get_item")
        assert msg == "[get_item] no creds"


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class TestItemTools:
    def test_get_all_items(self, jenkins):
        jenkins.get_items.return_value = [_job()]
        result = server.get_all_items(folder_depth=1)
        jenkins.get_items.assert_called_once_with(folder_depth=1)
        assert result[0]["fullname"] == "team/api"
        assert result[0]["color"] == "blue"

    def test_get_item_error(self, jenkins):
        jenkins.get_item.side_effect = _http_error(404)
        with pytest.raises(ToolError, match=r"^\[get_item\] Not found"):
            server.get_item("missing")

    def test_query_items_invalid_pattern(self, jenkins):
        jenkins.query_items.side_effect = re.error("unterminated character set")
        with pytest.raises(ToolError, match="Invalid pattern"):
            server.query_items(fullname_pattern="[")

    def test_build_item(self, jenkins):
        jenkins.build_item.return_value = 42
        assert server.build_item("team/api", "buildWithParameters", {"A": "1"}) == 42
        jenkins.build_item.assert_called_once_with("team/api", "buildWithParameters", {"A": "1"})

    def test_set_item_config(self, jenkins):
        assert server.set_item_config("team/api", "<xml/>") == "Updated config of 'team/api'."
        jenkins.set_item_config.assert_called_once_with("team/api", "<xml/>")

    def test_folder_output_has_jobs(self, jenkins):
        folder = Folder(class_="x.Folder", name="team", url="u", fullname="team", jobs=[_job()])
        jenkins.get_item.return_value = folder
        assert server.get_item("team")["jobs"][0]["name"] == "api"


class TestBuildTools:
    def test_explicit_number(self, jenkins):
        jenkins.get_build.return_value = Build(number=3, url="u", result="SUCCESS")
        assert server.get_build("team/api", 3) == {"number": 3, "url": "u", "result": "SUCCESS"}
        jenkins.get_item.assert_not_called()

    def test_falls_back_to_last_build(self, jenkins):
        jenkins.get_item.return_value = _job(last_build=9)
        jenkins.get_build_console_output.return_value = "done"
        assert server.get_build_console_output("team/api") == "done"
        jenkins.get_build_console_output.assert_called_once_with("team/api", 9)

    def test_no_last_build(self, jenkins):
        jenkins.get_item.return_value = _job()
        with pytest.raises(ToolError, match="Last build number is unavailable for this item."):
            server.get_build("team/api")

    def test_folder_has_no_last_build(self, jenkins):
        jenkins.get_item.return_value = Folder(class_="x.Folder", name="team", url="u")
        with pytest.raises(ToolError, match="Last build number is unavailable"):
            server.get_build_test_report("team")

    def test_build_scripts(self, jenkins):
        jenkins.get_build_replay.return_value = BuildReplay(scripts=["node {}"])
        assert server.get_build_scripts("team/api", 1) == ["node {}"]

    def test_running_builds(self, jenkins):
        jenkins.get_running_builds.return_value = [Build(number=1, url="u", timestamp=5)]
        assert server.get_running_builds() == [{"number": 1, "url": "u", "timestamp": 5}]

    def test_stop_build(self, jenkins):
        assert server.stop_build("team/api", 4) == "Stopped build #4 of 'team/api'."

    def test_connection_error(self, jenkins):
        jenkins.get_build.side_effect = ConnectionError("Cannot reach Jenkins at https://j.")
        with pytest.raises(ToolError, match=r"^\[get_build\] Cannot reach Jenkins"):
            server.get_build("team/api", 1)


class TestJenkinsForSession:
    def test_uses_headers_and_session(self):
        server.create_server(LifespanContext(jenkins_username="u", jenkins_password="p"))
        headers = {"x-jenkins-url": "https://hdr.example.com"}
        with patch("server.get_http_headers", return_value=headers):
            jenkins = server._jenkins()
        assert jenkins.url == "https://hdr.example.com"

    def test_headers_not_shared_between_requests(self):
        server.create_server(LifespanContext(
            jenkins_username="u", jenkins_password="p", jenkins_session_singleton=False,
        ))
        with patch("server.get_http_headers", return_value={"x-jenkins-url": "https://a.example.com"}):
            first = server._jenkins()
        with patch("server.get_http_headers", return_value={"x-jenkins-url": "https://b.example.com"}):
            second = server._jenkins()
        assert (first.url, second.url) == ("https://a.example.com", "https://b.example.com")

    def test_missing_credentials(self):
        server.create_server(LifespanContext())
        with patch("server.get_http_headers", return_value={}):
            with pytest.raises(MissingCredentialsError):
                server._jenkins()


# ---------------------------------------------------------------------------
# Server assembly
# ---------------------------------------------------------------------------


class TestCreateServer:
    def test_all_tools_registered(self):
        names = _tool_names(read_only=False)
        assert {"get_all_items", "get_build", "build_item", "stop_build"} <= names
        assert len(names) == len(server._READ_TOOLS) + len(server._WRITE_TOOLS)

    def test_read_only_drops_write_tools(self):
        names = _tool_names(read_only=True)
        assert names == {fn.__name__ for fn in server._READ_TOOLS}
        assert "set_item_config" not in names


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def test_defaults(self):
        options = server.parse_cli_args([])
        assert options.transport is None
        assert options.read_only is False
        assert options.jenkins_verify_ssl is None
        assert server.resolve_transport(options, env={}) == ("stdio", "0.0.0.0", 9887)

    def test_env_overrides_defaults(self):
        options = server.parse_cli_args([])
        env = {"MCP_TRANSPORT": "sse", "MCP_HOST": "127.0.0.1", "MCP_PORT": "8000"}
        assert server.resolve_transport(options, env=env) == ("sse", "127.0.0.1", 8000)

    def test_flags_override_env(self):
        options = server.parse_cli_args(["--transport", "streamable-http", "--port", "9000"])
        env = {"MCP_TRANSPORT": "sse", "MCP_PORT": "8000"}
        assert server.resolve_transport(options, env=env) == ("streamable-http", "0.0.0.0", 9000)

    def test_unknown_transport_in_env(self):
        with pytest.raises(ValueError, match="Unsupported transport"):
            server.resolve_transport(server.parse_cli_args([]), env={"MCP_TRANSPORT": "http"})

    def test_invalid_transport_flag(self):
        with pytest.raises(SystemExit):
            server.parse_cli_args(["--transport", "websocket"])

    def test_apply_cli_env(self):
        options = server.parse_cli_args([
            "--jenkins-url", "https://j",
            "--jenkins-timeout", "20",
            "--no-jenkins-verify-ssl",
            "--jenkins-session-singleton",
        ])
        env = {"JENKINS_USERNAME": "kept"}
        server.apply_cli_env(options, env)
        assert env == {
            "JENKINS_URL": "https://j",
            "JENKINS_USERNAME": "kept",
            "JENKINS_TIMEOUT": "20",
            "JENKINS_VERIFY_SSL": "false",
            "JENKINS_SESSION_SINGLETON": "true",
        }

    def test_main_runs_stdio(self):
        fake = MagicMock()
        with patch.dict("os.environ", clear=True), patch("server.load_dotenv"), \
                patch("server.create_server", return_value=fake) as create:
            server.main(["--read-only", "--jenkins-url", "https://cli.example.com"])
        lifespan = create.call_args.args[0]
        assert lifespan.jenkins_url == "https://cli.example.com"
        assert create.call_args.kwargs == {"read_only": True}
        fake.run.assert_called_once_with(transport="stdio", show_banner=False)

    def test_main_tool_regex_warns(self, caplog):
        with patch.dict("os.environ", clear=True), patch("server.load_dotenv"), \
                patch("server.create_server", return_value=MagicMock()):
            server.main(["--tool-regex", "get_.*"])
        assert "--tool-regex is deprecated" in caplog.text
