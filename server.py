"""
Jenkins MCP Server

A Model Context Protocol server exposing the Jenkins REST API as tools: list
and query jobs, inspect builds, nodes and the queue, and (unless started with
--read-only) trigger builds and edit configuration.

Transport: stdio by default.  --transport sse / streamable-http (or
           MCP_TRANSPORT) serves HTTP on --host / --port (0.0.0.0:9887).
Auth:      JENKINS_URL / JENKINS_USERNAME / JENKINS_PASSWORD (env, .env or CLI
           flags).  HTTP clients may send x-jenkins-url, x-jenkins-username
           and x-jenkins-password headers instead.
Logs:      All application logs go to stderr to avoid corrupting the JSON-RPC stream.
"""

import argparse
import logging
import os
import re
import sys
from typing import Literal

import requests
from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_context, get_http_headers

from mcp_jenkins.context import (
    LifespanContext,
    MissingCredentialsError,
    SessionRegistry,
    extract_jenkins_auth_from_headers,
    load_lifespan_context_from_env,
)
from mcp_jenkins.items import COLOR_KINDS, MultiBranchProject
from mcp_jenkins.jenkins_api import Jenkins
from mcp_jenkins.serializers import (
    build_to_output,
    item_to_output,
    node_to_output,
    queue_item_to_output,
    running_build_to_output,
)

logger = logging.getLogger("mcp-jenkins")

TRANSPORTS = ("stdio", "sse", "streamable-http")
_DEFAULT_HOST = "0.0.0.0"
_DEFAULT_PORT = 9887

# Set by create_server(); one registry per running server.
_sessions: SessionRegistry | None = None

_INSTRUCTIONS = (
    "You are connected to a Jenkins controller. "
    "Items are addressed by fullname, the slash-separated path through folders "
    "(e.g. 'team/service/main'). "
    "Use get_all_items or query_items to discover fullnames, get_item for one job, "
    "and get_build / get_build_console_output / get_build_test_report to inspect a build; "
    "omit the build number to use the last build. "
    "get_running_builds, get_all_nodes and get_all_queue_items describe current load. "
    "Write tools (build_item, stop_build, set_item_config, ...) change Jenkins state; "
    "only use them when explicitly asked."
)


def _handle_error(exc: Exception, context: str) -> str:
    """Convert common exceptions into readable strings for the AI."""
    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code
        if status == 401:
            return f"[{context}] Authentication failed (401). Check JENKINS_USERNAME and JENKINS_PASSWORD."
        if status == 404:
            return f"[{context}] Not found (404). Verify the item fullname, node name or build number."
        return f"[{context}] Jenkins API error {status}: {exc.response.text[:300]}"
    if isinstance(exc, (ConnectionError, TimeoutError, MissingCredentialsError, ValueError)):
        return f"[{context}] {exc}"
    if isinstance(exc, re.error):
        return f"[{context}] Invalid pattern: {exc}"
    return f"[{context}] Unexpected error: {exc}"


def _session_key() -> str:
    try:
        session_id = get_context().session_id
    except (RuntimeError, ValueError):
        # No request context (stdio startup, direct calls)
        return "stdio"
    return session_id or "stdio"


def _jenkins() -> Jenkins:
    """Jenkins client for the calling session."""
    if _sessions is None:
        raise RuntimeError("Server not initialised; call create_server() first.")
    header_auth = extract_jenkins_auth_from_headers(get_http_headers())
    return _sessions.runtime_for(_session_key()).get_jenkins(header_auth)


def _resolve_build_number(jenkins: Jenkins, fullname: str, number: int | None) -> int:
    if number is not None:
        return number
    item = jenkins.get_item(fullname)
    if isinstance(item, (MultiBranchProject, *COLOR_KINDS)) and item.last_build:
        return item.last_build.number
    raise ValueError("Last build number is unavailable for this item.")


# ---------------------------------------------------------------------------
# Item Tools
# ---------------------------------------------------------------------------


def get_all_items(folder_depth: int | None = None) -> list[dict]:
    """List every job and folder, depth-first.

    Args:
        folder_depth: How many folder levels to descend (0 = top level only).
            Omit to list everything.
    """
    try:
        items = _jenkins().get_items(folder_depth=folder_depth)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_all_items")) from exc
    return [item_to_output(item) for item in items]


def get_item(fullname: str) -> dict:
    """Details of one job or folder.

    Args:
        fullname: Item fullname, e.g. 'team/service/main'.
    """
    try:
        item = _jenkins().get_item(fullname)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_item")) from exc
    return item_to_output(item)


def get_item_config(fullname: str) -> str:
    """Raw config.xml of a job or folder.

    Args:
        fullname: Item fullname.
    """
    try:
        return _jenkins().get_item_config(fullname)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_item_config")) from exc


def query_items(
    class_pattern: str | None = None,
    fullname_pattern: str | None = None,
    color_pattern: str | None = None,
    folder_depth: int | None = None,
) -> list[dict]:
    """Find items whose class, fullname or color match regular expressions.

    Patterns are searched anywhere in the value (use ^...$ to anchor).

    Args:
        class_pattern: Regex on the Jenkins _class, e.g. 'WorkflowJob$'.
        fullname_pattern: Regex on the fullname, e.g. '^team/'.
        color_pattern: Regex on the job color, e.g. 'red' for failing jobs.
            Folders never match a color pattern.
        folder_depth: How many folder levels to descend. Omit for all.
    """
    try:
        items = _jenkins().query_items(
            class_pattern=class_pattern,
            fullname_pattern=fullname_pattern,
            color_pattern=color_pattern,
            folder_depth=folder_depth,
        )
    except Exception as exc:
        raise ToolError(_handle_error(exc, "query_items")) from exc
    return [item_to_output(item) for item in items]


def set_item_config(fullname: str, config_xml: str) -> str:
    """Replace the config.xml of a job or folder.

    Args:
        fullname: Item fullname.
        config_xml: Complete new config.xml content.
    """
    try:
        _jenkins().set_item_config(fullname, config_xml)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "set_item_config")) from exc
    return f"Updated config of '{fullname}'."


def build_item(
    fullname: str,
    build_type: Literal["build", "buildWithParameters"] = "build",
    params: dict[str, str | int | bool] | None = None,
) -> int:
    """Trigger a build.  Returns the id of the queue item it created
    (see get_queue_item).

    Args:
        fullname: Item fullname.
        build_type: 'build', or 'buildWithParameters' for parameterized jobs.
        params: Build parameters, e.g. {"BRANCH": "main"}.
    """
    try:
        return _jenkins().build_item(fullname, build_type, params)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "build_item")) from exc


# ---------------------------------------------------------------------------
# Node Tools
# ---------------------------------------------------------------------------


def get_all_nodes() -> list[dict]:
    """List all nodes (agents and the built-in node) with their online state."""
    try:
        nodes = _jenkins().get_nodes()
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_all_nodes")) from exc
    return [node_to_output(node) for node in nodes]


def get_node(name: str) -> dict:
    """One node with its executors.

    Args:
        name: Node name; 'master' or 'Built-In Node' for the controller.
    """
    try:
        node = _jenkins().get_node(name, depth=1)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_node")) from exc
    return node_to_output(node, include_executors=True)


def get_node_config(name: str) -> str:
    """Raw config.xml of a node.

    Args:
        name: Node name.
    """
    try:
        return _jenkins().get_node_config(name)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_node_config")) from exc


def set_node_config(name: str, config_xml: str) -> str:
    """Replace the config.xml of a node.

    Args:
        name: Node name.
        config_xml: Complete new config.xml content.
    """
    try:
        _jenkins().set_node_config(name, config_xml)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "set_node_config")) from exc
    return f"Updated config of node '{name}'."


# ---------------------------------------------------------------------------
# Queue Tools
# ---------------------------------------------------------------------------


def get_all_queue_items() -> list[dict]:
    """Builds waiting in the queue, with the reason they are waiting."""
    try:
        queue = _jenkins().get_queue()
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_all_queue_items")) from exc
    return [queue_item_to_output(item) for item in queue.items]


def get_queue_item(id: int) -> dict:
    """One queue item.

    Args:
        id: Queue item id, as returned by build_item.
    """
    try:
        item = _jenkins().get_queue_item(id)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_queue_item")) from exc
    return queue_item_to_output(item, include_task=True)


def cancel_queue_item(id: int) -> str:
    """Remove an item from the build queue.

    Args:
        id: Queue item id.
    """
    try:
        _jenkins().cancel_queue_item(id)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "cancel_queue_item")) from exc
    return f"Cancelled queue item {id}."


# ---------------------------------------------------------------------------
# Build Tools
# ---------------------------------------------------------------------------


def get_running_builds() -> list[dict]:
    """Builds currently running on any node."""
    try:
        builds = _jenkins().get_running_builds()
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_running_builds")) from exc
    return [running_build_to_output(build) for build in builds]


def get_build(fullname: str, number: int | None = None) -> dict:
    """Status, result and timing of a build.

    Args:
        fullname: Item fullname.
        number: Build number. Omit for the last build.
    """
    try:
        jenkins = _jenkins()
        build = jenkins.get_build(fullname, _resolve_build_number(jenkins, fullname, number))
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_build")) from exc
    return build_to_output(build)


def get_build_scripts(fullname: str, number: int | None = None) -> list[str]:
    """Pipeline scripts a build ran (from its replay page).

    Args:
        fullname: Item fullname.
        number: Build number. Omit for the last build.
    """
    try:
        jenkins = _jenkins()
        replay = jenkins.get_build_replay(fullname, _resolve_build_number(jenkins, fullname, number))
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_build_scripts")) from exc
    return replay.scripts


def get_build_console_output(fullname: str, number: int | None = None) -> str:
    """Full console log of a build (truncated after 10 MB).

    Args:
        fullname: Item fullname.
        number: Build number. Omit for the last build.
    """
    try:
        jenkins = _jenkins()
        return jenkins.get_build_console_output(
            fullname, _resolve_build_number(jenkins, fullname, number),
        )
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_build_console_output")) from exc


def get_build_test_report(fullname: str, number: int | None = None) -> dict:
    """JUnit test report of a build, as Jenkins returns it.

    Args:
        fullname: Item fullname.
        number: Build number. Omit for the last build.
    """
    try:
        jenkins = _jenkins()
        return jenkins.get_build_test_report(
            fullname, _resolve_build_number(jenkins, fullname, number),
        )
    except Exception as exc:
        raise ToolError(_handle_error(exc, "get_build_test_report")) from exc


def stop_build(fullname: str, number: int) -> str:
    """Abort a running build.

    Args:
        fullname: Item fullname.
        number: Build number.
    """
    try:
        _jenkins().stop_build(fullname, number)
    except Exception as exc:
        raise ToolError(_handle_error(exc, "stop_build")) from exc
    return f"Stopped build #{number} of '{fullname}'."


_READ_TOOLS = (
    get_all_items,
    get_item,
    get_item_config,
    query_items,
    get_all_nodes,
    get_node,
    get_node_config,
    get_all_queue_items,
    get_queue_item,
    get_running_builds,
    get_build,
    get_build_scripts,
    get_build_console_output,
    get_build_test_report,
)

_WRITE_TOOLS = (
    set_item_config,
    build_item,
    set_node_config,
    cancel_queue_item,
    stop_build,
)


def create_server(lifespan: LifespanContext, read_only: bool = False) -> FastMCP:
    """Build the MCP server.  Write tools are left out when ``read_only``."""
    global _sessions
    _sessions = SessionRegistry(lifespan)

    server = FastMCP("mcp-jenkins", instructions=_INSTRUCTIONS)
    for fn in _READ_TOOLS:
        server.tool(fn, annotations={"readOnlyHint": True})
    if not read_only:
        for fn in _WRITE_TOOLS:
            server.tool(fn, annotations={"readOnlyHint": False})
    return server


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

# CLI option -> environment variable read by load_lifespan_context_from_env
_CLI_ENV = {
    "jenkins_url": "JENKINS_URL",
    "jenkins_username": "JENKINS_USERNAME",
    "jenkins_password": "JENKINS_PASSWORD",
    "jenkins_timeout": "JENKINS_TIMEOUT",
    "jenkins_verify_ssl": "JENKINS_VERIFY_SSL",
    "jenkins_session_singleton": "JENKINS_SESSION_SINGLETON",
}


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mcp-jenkins",
        description="MCP server for the Jenkins REST API.",
    )
    parser.add_argument("--jenkins-url", help="Jenkins base URL (JENKINS_URL)")
    parser.add_argument("--jenkins-username", help="Jenkins username (JENKINS_USERNAME)")
    parser.add_argument("--jenkins-password", help="Jenkins password or API token (JENKINS_PASSWORD)")
    parser.add_argument("--jenkins-timeout", type=int, help="Request timeout in seconds (default 5)")
    parser.add_argument(
        "--jenkins-verify-ssl", action=argparse.BooleanOptionalAction, default=None,
        help="Verify Jenkins TLS certificates (default on)",
    )
    parser.add_argument(
        "--jenkins-session-singleton", action=argparse.BooleanOptionalAction, default=None,
        help="Reuse one Jenkins client per MCP session (default on)",
    )
    parser.add_argument("--read-only", action="store_true", help="Do not register write tools")
    parser.add_argument("--tool-regex", help="Deprecated, has no effect")
    parser.add_argument("--transport", choices=TRANSPORTS, help="MCP transport (default stdio)")
    parser.add_argument("--host", help=f"Bind address for HTTP transports (default {_DEFAULT_HOST})")
    parser.add_argument("--port", type=int, help=f"Port for HTTP transports (default {_DEFAULT_PORT})")
    return parser.parse_args(argv)


def apply_cli_env(options: argparse.Namespace, env: dict | None = None) -> None:
    """Write the Jenkins flags that were given into the environment."""
    env = os.environ if env is None else env
    for attr, var in _CLI_ENV.items():
        value = getattr(options, attr)
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        env[var] = str(value)


def resolve_transport(options: argparse.Namespace, env: dict | None = None) -> tuple[str, str, int]:
    """(transport, host, port): CLI flag, then MCP_* variable, then default."""
    env = os.environ if env is None else env
    transport = options.transport or env.get("MCP_TRANSPORT") or "stdio"
    if transport not in TRANSPORTS:
        raise ValueError(f"Unsupported transport {transport!r}; expected one of {', '.join(TRANSPORTS)}.")
    host = options.host or env.get("MCP_HOST") or _DEFAULT_HOST
    port = options.port or int(env.get("MCP_PORT") or _DEFAULT_PORT)
    return transport, host, port


def main(argv: list[str] | None = None) -> None:
    load_dotenv()

    # Route all library and application logs to stderr, never stdout.
    logging.basicConfig(
        stream=sys.stderr,
        level=os.getenv("MCP_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    options = parse_cli_args(argv)
    if options.tool_regex is not None:
        logger.warning("--tool-regex is deprecated and has no effect; use --read-only instead.")
    apply_cli_env(options)

    try:
        lifespan = load_lifespan_context_from_env()
        transport, host, port = resolve_transport(options)
    except ValueError as exc:
        sys.exit(f"mcp-jenkins: {exc}")

    server = create_server(lifespan, read_only=options.read_only)
    if transport == "stdio":
        server.run(transport="stdio", show_banner=False)
    else:
        path = "/sse" if transport == "sse" else "/mcp"
        print(
            f"Jenkins MCP server starting ({transport})\n"
            f"  Local:    http://127.0.0.1:{port}{path}",
            file=sys.stderr,
        )
        server.run(transport=transport, host=host, port=port, show_banner=False)


if __name__ == "__main__":
    main()
