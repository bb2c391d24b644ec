"""
Convert model objects into the JSON-ready dicts returned by the MCP tools.

Output keys follow Jenkins' own camelCase naming so results can be compared
against the REST API directly.  Null fields are dropped to keep tool output
small.
"""

from __future__ import annotations

from typing import Any

from mcp_jenkins.items import COLOR_KINDS, CONTAINER_KINDS, Item, MultiBranchProject, UnknownItem
from mcp_jenkins.models import Build, Node, QueueItem


def remove_nil(value: Any) -> Any:
    """Drop None values from dicts, at any nesting level."""
    if isinstance(value, list):
        return [remove_nil(v) for v in value]
    if isinstance(value, dict):
        return {k: remove_nil(v) for k, v in value.items() if v is not None}
    return value


def build_to_output(build: Build) -> dict:
    return remove_nil({
        "number": build.number,
        "url": build.url,
        "timestamp": build.timestamp,
        "duration": build.duration,
        "estimatedDuration": build.estimated_duration,
        "building": build.building,
        "result": build.result,
        "nextBuild": build_to_output(build.next_build) if build.next_build else None,
        "previousBuild": build_to_output(build.previous_build) if build.previous_build else None,
    })


def item_to_output(item: Item) -> dict:
    base = {
        "class_": item.class_,
        "name": item.name,
        "url": item.url,
        "fullname": item.fullname,
    }

    if isinstance(item, UnknownItem):
        return remove_nil({**item.extra, **base})

    output = dict(base)
    if isinstance(item, CONTAINER_KINDS):
        output["jobs"] = [item_to_output(child) for child in item.jobs]
    if isinstance(item, COLOR_KINDS):
        output["color"] = item.color
    if isinstance(item, (MultiBranchProject, *COLOR_KINDS)) and item.last_build:
        output["lastBuild"] = build_to_output(item.last_build)
    return remove_nil(output)


def running_build_to_output(build: Build) -> dict:
    return remove_nil({
        "number": build.number,
        "url": build.url,
        "building": build.building,
        "timestamp": build.timestamp,
    })


def node_to_output(node: Node, include_executors: bool = False) -> dict:
    output: dict[str, Any] = {
        "displayName": node.display_name,
        "offline": node.offline,
    }
    if include_executors:
        output["executors"] = [
            {"currentExecutable": remove_nil({
                "url": e.current_executable.url,
                "timestamp": e.current_executable.timestamp,
                "number": e.current_executable.number,
                "fullDisplayName": e.current_executable.full_display_name,
            })} if e.current_executable else {}
            for e in node.executors
        ]
    return output


def queue_item_to_output(item: QueueItem, include_task: bool = False) -> dict:
    output: dict[str, Any] = {
        "id": item.id,
        "inQueueSince": item.in_queue_since,
        "url": item.url,
        "why": item.why,
        "taskName": item.task.name,
    }
    if include_task:
        output["task"] = {
            "fullDisplayName": item.task.full_display_name,
            "name": item.task.name,
            "url": item.task.url,
        }
    return remove_nil(output)
