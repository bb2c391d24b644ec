"""
Jenkins REST API client.

All methods raise meaningful exceptions rather than returning error strings,
so callers (MCP tools) can decide how to surface the failure:

  - requests.HTTPError   non-2xx response (after retries, for GETs)
  - ConnectionError      Jenkins unreachable
  - TimeoutError         no response within the configured timeout
  - ValueError           response payload is not what the endpoint promises
"""

from __future__ import annotations

import html
import logging
import re
import time
from urllib.parse import quote

import requests
import urllib3

from mcp_jenkins import rest_endpoint as ep
from mcp_jenkins.items import COLOR_KINDS, Item, enumerate_items, serialize_item
from mcp_jenkins.models import (
    Build,
    BuildReplay,
    Node,
    Queue,
    QueueItem,
    parse_build,
    parse_node,
    parse_queue,
    parse_queue_item,
)

logger = logging.getLogger(__name__)

_RETRYABLE_STATUSES = {429, 502, 503, 504}
_MAX_RETRIES = 2
_RETRY_DELAYS = (1, 3)  # seconds between retry 0→1 and 1→2

_MAX_LOG_BYTES = 10 * 1024 * 1024   # 10 MB

_XML_HEADERS = {"Content-Type": "text/xml; charset=utf-8"}

_TEXTAREA_RE = re.compile(
    r'<textarea\b[^>]*name="([^"]+)"[^>]*>(.*?)</textarea>', re.IGNORECASE | re.DOTALL,
)
_REPLAY_SCRIPT_NAME_RE = re.compile(r"_\..*Script.*")

_CONTROLLER_NODE_NAMES = {"master", "Built-In Node"}


def _param_value(value: str | int | bool) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_replay_scripts(page: str) -> BuildReplay:
    """Pull Pipeline script sources out of a build's replay page.

    The replay form renders each script in a ``<textarea name="_.mainScript">``
    (or ``_.additionalScripts`` etc.); contents are HTML-escaped.
    """
    scripts = [
        html.unescape(content)
        for name, content in _TEXTAREA_RE.findall(page)
        if _REPLAY_SCRIPT_NAME_RE.search(name)
    ]
    return BuildReplay(scripts=scripts)


def parse_queue_location(location: str | None) -> int:
    """Extract the queue item id from a build trigger's Location header.

    '.../queue/item/123/' -> 123
    """
    if not location:
        raise ValueError("Missing queue location in Jenkins response.")
    tail = location.strip().rstrip("/").rsplit("/", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        raise ValueError(f"Invalid queue location: {location}") from None


def items_tree_query(levels: int) -> str:
    """Nested ``tree`` query fetching ``levels`` folder levels in one request.

    levels=2 -> 'jobs[url,color,name,jobs[url,color,name,jobs]]'
    """
    query = "jobs"
    for _ in range(levels):
        query = f"jobs[url,color,name,{query}]"
    return query


class Jenkins:
    """Thin client for one Jenkins controller and one set of credentials."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        timeout: float = 75,
        verify_ssl: bool = True,
    ):
        self.url = url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._session = requests.Session()
        self._session.auth = (username, password)
        self._session.verify = verify_ssl
        self._crumb_header: dict[str, str] | None = None

        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def __repr__(self) -> str:
        return f"Jenkins({self.url!r})"

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    def endpoint_url(self, endpoint: str) -> str:
        return "/".join(segment.strip("/") for segment in (self.url, endpoint))

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        data: dict | str | None = None,
        headers: dict[str, str] | None = None,
        crumb: bool = True,
        params: dict[str, str | int | bool] | None = None,
        stream: bool = False,
    ) -> requests.Response:
        """Send a request to ``endpoint`` (relative to the base URL).

        GETs are retried on transient failures (429/502/503/504, connection
        errors, timeouts).  Other methods are sent once.
        """
        final_headers = dict(headers or {})
        if crumb:
            final_headers.update(self.crumb_header())
        if isinstance(data, dict):
            data = {k: _param_value(v) for k, v in data.items()}
        if params:
            params = {k: _param_value(v) for k, v in params.items()}

        url = self.endpoint_url(endpoint)
        attempts = _MAX_RETRIES + 1 if method.upper() == "GET" else 1
        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = self._session.request(
                    method, url,
                    data=data, headers=final_headers, params=params,
                    timeout=self.timeout, stream=stream,
                )
                if response.status_code in _RETRYABLE_STATUSES and not last:
                    logger.debug("Jenkins HTTP %s for %s; retrying", response.status_code, url)
                    time.sleep(_RETRY_DELAYS[attempt])
                    continue
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                logger.debug("Jenkins HTTP %s for %s %s", exc.response.status_code, method, url)
                raise
            except requests.ConnectionError:
                if not last:
                    time.sleep(_RETRY_DELAYS[attempt])
                    continue
                raise ConnectionError(
                    f"Cannot reach Jenkins at {self.url}. "
                    "Verify the server is running and the Jenkins URL is correct."
                ) from None
            except requests.Timeout:
                if not last:
                    time.sleep(_RETRY_DELAYS[attempt])
                    continue
                raise TimeoutError(
                    f"Jenkins did not respond within {self.timeout} seconds ({url})."
                ) from None
        raise RuntimeError(f"Exhausted retries for {url}")

    def crumb_header(self) -> dict[str, str]:
        """CSRF crumb header, fetched once.  A 404 means CSRF protection is off."""
        if self._crumb_header is not None:
            return self._crumb_header

        try:
            data = self.request("GET", ep.CRUMB.resolve(), crumb=False).json()
        except requests.HTTPError as exc:
            if exc.response.status_code != 404:
                raise
            self._crumb_header = {}
            return self._crumb_header

        field, value = data.get("crumbRequestField"), data.get("crumb")
        self._crumb_header = {field: value} if field and value else {}
        return self._crumb_header

    @staticmethod
    def parse_fullname(fullname: str) -> tuple[str, str]:
        """Split a slash-separated item fullname into the ``{folder}`` and
        ``{name}`` parts of an endpoint.  Each segment is URL-encoded.

        'simple-job'          -> ('', 'simple-job')
        'my-org/my-repo/main' -> ('job/my-org/job/my-repo/', 'main')
        """
        segments = [quote(seg, safe="") for seg in fullname.split("/")]
        name = segments[-1]
        folder = f"job/{'/job/'.join(segments[:-1])}/" if len(segments) > 1 else ""
        return folder, name

    # -----------------------------------------------------------------------
    # Queue
    # -----------------------------------------------------------------------

    def get_queue(self, depth: int = 1) -> Queue:
        return parse_queue(self.request("GET", ep.QUEUE.resolve(depth=depth)).json())

    def get_queue_item(self, item_id: int, depth: int = 0) -> QueueItem:
        path = ep.QUEUE_ITEM.resolve(id=item_id, depth=depth)
        return parse_queue_item(self.request("GET", path).json())

    def cancel_queue_item(self, item_id: int) -> None:
        self.request("POST", ep.QUEUE_CANCEL_ITEM.resolve(id=item_id))

    # -----------------------------------------------------------------------
    # Nodes
    # -----------------------------------------------------------------------

    @staticmethod
    def _node_name(name: str) -> str:
        """The controller is addressed as '(master)' regardless of its display name."""
        if name in _CONTROLLER_NODE_NAMES:
            return "(master)"
        return quote(name, safe="()")

    def get_node(self, name: str, depth: int = 0) -> Node:
        path = ep.NODE.resolve(name=self._node_name(name), depth=depth)
        return parse_node(self.request("GET", path).json())

    def get_nodes(self, depth: int = 0) -> list[Node]:
        data = self.request("GET", ep.NODES.resolve(depth=depth)).json()
        return [parse_node(c) for c in data.get("computer") or []]

    def get_node_config(self, name: str) -> str:
        path = ep.NODE_CONFIG.resolve(name=self._node_name(name))
        return self.request("GET", path).text

    def set_node_config(self, name: str, config_xml: str) -> None:
        path = ep.NODE_CONFIG.resolve(name=self._node_name(name))
        self.request("POST", path, headers=_XML_HEADERS, data=config_xml)

    # -----------------------------------------------------------------------
    # Builds
    # -----------------------------------------------------------------------

    def get_build(self, fullname: str, number: int, depth: int = 0) -> Build:
        folder, name = self.parse_fullname(fullname)
        path = ep.BUILD.resolve(folder=folder, name=name, number=number, depth=depth)
        return parse_build(self.request("GET", path).json())

    def get_build_console_output(self, fullname: str, number: int) -> str:
        """Fetch the console log for a build, streaming and capping at 10 MB."""
        folder, name = self.parse_fullname(fullname)
        path = ep.BUILD_CONSOLE_OUTPUT.resolve(folder=folder, name=name, number=number)
        response = self.request("GET", path, stream=True)
        if response.encoding is None:
            response.encoding = "utf-8"
        chunks: list[str] = []
        total = 0
        for chunk in response.iter_content(chunk_size=8192, decode_unicode=True):
            total += len(chunk)
            chunks.append(chunk)
            if total >= _MAX_LOG_BYTES:
                chunks.append("\n[LOG TRUNCATED: exceeded 10 MB download limit]")
                break
        response.close()
        return "".join(chunks)

    def stop_build(self, fullname: str, number: int) -> None:
        folder, name = self.parse_fullname(fullname)
        self.request("POST", ep.BUILD_STOP.resolve(folder=folder, name=name, number=number))

    def get_build_replay(self, fullname: str, number: int) -> BuildReplay:
        folder, name = self.parse_fullname(fullname)
        path = ep.BUILD_REPLAY.resolve(folder=folder, name=name, number=number)
        return parse_replay_scripts(self.request("GET", path).text)

    def get_build_test_report(self, fullname: str, number: int, depth: int = 0) -> dict:
        folder, name = self.parse_fullname(fullname)
        path = ep.BUILD_TEST_REPORT.resolve(folder=folder, name=name, number=number, depth=depth)
        return self.request("GET", path).json()

    def get_running_builds(self) -> list[Build]:
        """Builds currently occupying an executor on any node."""
        builds = []
        for node in self.get_nodes(depth=2):
            for executor in node.executors:
                current = executor.current_executable
                if current is None or not current.number or current.url is None:
                    continue
                builds.append(Build(number=current.number, url=current.url,
                                    timestamp=current.timestamp))
        return builds

    # -----------------------------------------------------------------------
    # Items
    # -----------------------------------------------------------------------

    def get_items(
        self, folder_depth: int | None = None, folder_depth_per_request: int = 10,
    ) -> list[Item]:
        """Every item reachable from the root, depth-first.

        One request fetches ``folder_depth_per_request`` levels; items nested
        deeper than that are not listed.  ``folder_depth`` limits descent
        further (0 = root level only).
        """
        query = items_tree_query(folder_depth_per_request)
        data = self.request("GET", ep.ITEMS.resolve(folder="", query=query)).json()
        items = enumerate_items(data.get("jobs") or [], max_depth=folder_depth)
        logger.debug("Enumerated %d items (folder_depth=%s)", len(items), folder_depth)
        return items

    def get_item(self, fullname: str, depth: int = 0) -> Item:
        folder, name = self.parse_fullname(fullname)
        path = ep.ITEM.resolve(folder=folder, name=name, depth=depth)
        return serialize_item(self.request("GET", path).json(), fullname=fullname)

    def get_item_config(self, fullname: str) -> str:
        folder, name = self.parse_fullname(fullname)
        return self.request("GET", ep.ITEM_CONFIG.resolve(folder=folder, name=name)).text

    def set_item_config(self, fullname: str, config_xml: str) -> None:
        folder, name = self.parse_fullname(fullname)
        path = ep.ITEM_CONFIG.resolve(folder=folder, name=name)
        self.request("POST", path, headers=_XML_HEADERS, data=config_xml)

    def query_items(
        self,
        class_pattern: str | None = None,
        fullname_pattern: str | None = None,
        color_pattern: str | None = None,
        folder_depth: int | None = None,
        folder_depth_per_request: int = 10,
    ) -> list[Item]:
        """Filter ``get_items`` by regex (searched, not anchored).

        A color pattern only ever matches jobs that have a color; folders and
        unknown items are dropped when it is given.
        """
        class_re = re.compile(class_pattern) if class_pattern else None
        fullname_re = re.compile(fullname_pattern) if fullname_pattern else None
        color_re = re.compile(color_pattern) if color_pattern else None

        result = []
        for item in self.get_items(folder_depth, folder_depth_per_request):
            if class_re and not class_re.search(item.class_):
                continue
            if not item.fullname or (fullname_re and not fullname_re.search(item.fullname)):
                continue
            if color_re and not (isinstance(item, COLOR_KINDS) and color_re.search(item.color)):
                continue
            result.append(item)
        return result

    def build_item(
        self,
        fullname: str,
        build_type: str = "build",
        params: dict[str, str | int | bool] | None = None,
    ) -> int:
        """Trigger a build and return the id of the queue item it created."""
        if build_type not in ("build", "buildWithParameters"):
            raise ValueError(f"Invalid build type: {build_type}")
        folder, name = self.parse_fullname(fullname)
        path = ep.ITEM_BUILD.resolve(folder=folder, name=name, build_type=build_type)
        response = self.request("POST", path, params=params or None)
        return parse_queue_location(response.headers.get("Location"))
