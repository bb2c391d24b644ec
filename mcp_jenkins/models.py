"""
Typed views over Jenkins JSON payloads for builds, nodes and the queue.

Jenkins responses are loosely typed: optional fields may be missing, null, or
of an unexpected type depending on plugins and the requested depth.  The
parsers below keep only well-typed values and raise ValueError when a field
the rest of the code relies on (build number, node name, queue id, ...) is
absent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _opt_int(value: Any) -> int | None:
    # bool is an int subclass; Jenkins never sends booleans for numeric fields
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _opt_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


@dataclass
class Build:
    number: int
    url: str
    timestamp: int | None = None
    duration: int | None = None
    estimated_duration: int | None = None
    building: bool | None = None
    result: str | None = None
    next_build: Build | None = None
    previous_build: Build | None = None


@dataclass
class BuildReplay:
    scripts: list[str] = field(default_factory=list)


def parse_build(data: Any) -> Build:
    """Parse a build payload.  ``nextBuild``/``previousBuild`` are parsed
    one level each way, as Jenkins only nests them that deep."""
    if not isinstance(data, dict):
        raise ValueError("Invalid Build payload.")
    number = _opt_int(data.get("number"))
    url = _opt_str(data.get("url"))
    if number is None or url is None:
        raise ValueError("Invalid Build payload.")

    next_raw = data.get("nextBuild")
    prev_raw = data.get("previousBuild")
    return Build(
        number=number,
        url=url,
        timestamp=_opt_int(data.get("timestamp")),
        duration=_opt_int(data.get("duration")),
        estimated_duration=_opt_int(data.get("estimatedDuration")),
        building=_opt_bool(data.get("building")),
        result=_opt_str(data.get("result")),
        next_build=parse_build(next_raw) if isinstance(next_raw, dict) else None,
        previous_build=parse_build(prev_raw) if isinstance(prev_raw, dict) else None,
    )


def parse_build_summary(data: Any) -> Build | None:
    """Lenient variant used for ``lastBuild`` inside item payloads."""
    try:
        return parse_build(data)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@dataclass
class CurrentExecutable:
    url: str | None = None
    timestamp: int | None = None
    number: int | None = None
    full_display_name: str | None = None


@dataclass
class NodeExecutor:
    current_executable: CurrentExecutable | None = None


@dataclass
class Node:
    display_name: str
    offline: bool
    executors: list[NodeExecutor] = field(default_factory=list)


def parse_node(data: Any) -> Node:
    if not isinstance(data, dict):
        raise ValueError("Invalid Node payload.")
    display_name = _opt_str(data.get("displayName"))
    offline = _opt_bool(data.get("offline"))
    if display_name is None or offline is None:
        raise ValueError("Invalid Node payload.")

    executors = []
    for raw in data.get("executors") or []:
        current = raw.get("currentExecutable") if isinstance(raw, dict) else None
        if isinstance(current, dict):
            executors.append(NodeExecutor(CurrentExecutable(
                url=_opt_str(current.get("url")),
                timestamp=_opt_int(current.get("timestamp")),
                number=_opt_int(current.get("number")),
                full_display_name=_opt_str(current.get("fullDisplayName")),
            )))
        else:
            executors.append(NodeExecutor())
    return Node(display_name=display_name, offline=offline, executors=executors)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


@dataclass
class QueueItemTask:
    full_display_name: str | None = None
    name: str | None = None
    url: str | None = None


@dataclass
class QueueItem:
    id: int
    in_queue_since: int
    url: str
    why: str | None = None
    task: QueueItemTask = field(default_factory=QueueItemTask)


@dataclass
class Queue:
    items: list[QueueItem] = field(default_factory=list)
    discoverable_items: list[Any] = field(default_factory=list)


def parse_queue_item(data: Any) -> QueueItem:
    if not isinstance(data, dict):
        raise ValueError("Invalid QueueItem payload.")
    item_id = _opt_int(data.get("id"))
    since = _opt_int(data.get("inQueueSince"))
    url = _opt_str(data.get("url"))
    if item_id is None or since is None or url is None:
        raise ValueError("Invalid QueueItem payload.")

    task = data.get("task") if isinstance(data.get("task"), dict) else {}
    return QueueItem(
        id=item_id,
        in_queue_since=since,
        url=url,
        why=_opt_str(data.get("why")),
        task=QueueItemTask(
            full_display_name=_opt_str(task.get("fullDisplayName")),
            name=_opt_str(task.get("name")),
            url=_opt_str(task.get("url")),
        ),
    )


def parse_queue(data: Any) -> Queue:
    data = data if isinstance(data, dict) else {}
    discoverable = data.get("discoverableItems")
    return Queue(
        items=[parse_queue_item(i) for i in data.get("items") or []],
        discoverable_items=discoverable if isinstance(discoverable, list) else [],
    )
