"""
Jenkins item classification and job-tree enumeration.

Jenkins returns jobs as a tree: folders and multibranch projects carry their
children under the same ``jobs`` key as the root listing, to whatever depth
the ``tree`` query asked for.  ``enumerate_items`` flattens that tree into a
depth-first list of typed items:

    {"jobs": [a, b{jobs: [c]}]}  ->  [a, b, b/c]

The walk uses an explicit stack instead of recursion, so very deep folder
hierarchies cannot exhaust the interpreter stack.  Input payloads are treated
as untrusted: entries that are not objects or have no string ``name`` are
skipped, and the payload itself is never modified.

Classification is suffix matching on ``_class`` (see ITEM_KIND_RULES).  This
is a heuristic: plugins can introduce job types whose class names do not
follow the convention, and those fall through to UnknownItem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from mcp_jenkins.models import Build, parse_build_summary

FULLNAME_SEPARATOR = "/"

# Base fields shared by every kind; everything else lands in UnknownItem.extra
_BASE_KEYS = frozenset({"_class", "name", "url", "fullName", "fullname"})
_END = object()


@dataclass
class Item:
    class_: str
    name: str
    url: str
    fullname: str | None = None

    kind: ClassVar[str] = "Item"


@dataclass
class Folder(Item):
    jobs: list[Item] = field(default_factory=list)

    kind: ClassVar[str] = "Folder"


@dataclass
class MultiBranchProject(Item):
    jobs: list[Item] = field(default_factory=list)
    last_build: Build | None = None

    kind: ClassVar[str] = "MultiBranchProject"


@dataclass
class FreeStyleProject(Item):
    color: str = ""
    last_build: Build | None = None

    kind: ClassVar[str] = "FreeStyleProject"


@dataclass
class Job(Item):
    color: str = ""
    last_build: Build | None = None

    kind: ClassVar[str] = "Job"


@dataclass
class UnknownItem(Item):
    extra: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "UnknownItem"


# Checked in order, first suffix match wins.
ITEM_KIND_RULES: tuple[tuple[str, type[Item]], ...] = (
    ("Folder", Folder),
    ("MultiBranchProject", MultiBranchProject),
    ("FreeStyleProject", FreeStyleProject),
    ("Job", Job),
)

CONTAINER_KINDS = (Folder, MultiBranchProject)
COLOR_KINDS = (FreeStyleProject, Job)


def own_fullname(data: dict) -> str | None:
    """Return the fullname the payload already carries, if any."""
    for key in ("fullName", "fullname"):
        value = data.get(key)
        if isinstance(value, str):
            return value
    return None


def classify_item(
    data: dict,
    fullname: str | None = None,
    rules: tuple[tuple[str, type[Item]], ...] = ITEM_KIND_RULES,
) -> Item:
    """Build a typed item from one raw payload node, without its children.

    Container ``jobs`` lists start empty; the enumerator fills them in as it
    visits the children.
    """
    class_name = data.get("_class")
    class_name = class_name if isinstance(class_name, str) else ""
    url = data.get("url")
    base = {
        "class_": class_name,
        "name": data["name"],
        "url": url if isinstance(url, str) else "",
        "fullname": fullname if fullname is not None else own_fullname(data),
    }

    kind = next((k for suffix, k in rules if class_name.endswith(suffix)), UnknownItem)

    if kind is Folder:
        return Folder(**base)
    if kind is MultiBranchProject:
        return MultiBranchProject(**base, last_build=parse_build_summary(data.get("lastBuild")))
    if kind in COLOR_KINDS:
        color = data.get("color")
        return kind(
            **base,
            color=color if isinstance(color, str) else "",
            last_build=parse_build_summary(data.get("lastBuild")),
        )
    return UnknownItem(**base, extra={k: v for k, v in data.items() if k not in _BASE_KEYS})


def _walk(
    children: Any,
    max_depth: int | None,
    prefix: str,
    parent: Item | None,
    rules: tuple[tuple[str, type[Item]], ...],
) -> list[Item]:
    if children is None:
        children = []
    elif not isinstance(children, list):
        children = [children]

    items: list[Item] = []
    # (depth, ancestry path, pending raw children, container to attach to)
    stack: list[tuple[int, str, Any, Item | None]] = [(0, prefix, iter(children), parent)]

    while stack:
        depth, path, pending, container = stack[-1]
        raw = next(pending, _END)
        if raw is _END:
            stack.pop()
            continue
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            continue

        name = raw["name"]
        fullname = own_fullname(raw)
        if fullname is None:
            fullname = f"{path}{FULLNAME_SEPARATOR}{name}" if path else name

        item = classify_item(raw, fullname, rules)
        items.append(item)
        if isinstance(container, CONTAINER_KINDS):
            container.jobs.append(item)

        sub = raw.get("jobs")
        if isinstance(sub, list) and (max_depth is None or depth < max_depth):
            stack.append((depth + 1, fullname, iter(sub), item))

    return items


def enumerate_items(
    root_children: Any,
    max_depth: int | None = None,
    rules: tuple[tuple[str, type[Item]], ...] = ITEM_KIND_RULES,
) -> list[Item]:
    """Flatten a job tree into depth-first pre-order.

    Args:
        root_children: The top-level ``jobs`` list of a Jenkins response.
        max_depth: 0 keeps only the top level; None descends as far as the
            payload goes.
        rules: Suffix-to-kind table used for classification.
    """
    return _walk(root_children, max_depth, "", None, rules)


def serialize_item(data: Any, fullname: str | None = None) -> Item:
    """Classify a single item payload (``/job/x/api/json``) with its children."""
    if not isinstance(data, dict) or not isinstance(data.get("name"), str):
        raise ValueError("Invalid item payload.")

    item = classify_item(data, own_fullname(data) or fullname)
    _walk(data.get("jobs"), None, item.fullname or "", item, ITEM_KIND_RULES)
    return item
