"""
Jenkins REST endpoint templates.

Each endpoint is a path pattern with ``{name}`` placeholders, resolved into a
concrete request path relative to the Jenkins base URL:

    BUILD.resolve(folder="job/team/", name="api", number=42, depth=0)
    -> 'job/team/job/api/42/api/json?depth=0'

Resolution is all-or-nothing: if any placeholder has no value, nothing is
substituted and MissingFieldsError names every missing field.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9_]+)\}")


class MissingFieldsError(ValueError):
    """Raised when an endpoint is resolved without all of its placeholders."""

    def __init__(self, missing: set[str] | frozenset[str]):
        self.missing = tuple(sorted(missing))
        quoted = ", ".join(f"'{field}'" for field in self.missing)
        super().__init__(f"Missing: {{{quoted}}}")


class RestEndpoint:
    """An immutable path template with named placeholders."""

    __slots__ = ("template", "fields")

    def __init__(self, template: str):
        self.template = template
        self.fields = frozenset(_PLACEHOLDER_RE.findall(template))

    def resolve(self, values: Mapping[str, str | int] | None = None, /, **kwargs: str | int) -> str:
        """Substitute every placeholder with ``str(value)``.

        Values may be given as a mapping, as keyword arguments, or both
        (keywords win).
        """
        merged = {**(values or {}), **kwargs}
        missing = self.fields - merged.keys()
        if missing:
            raise MissingFieldsError(missing)
        return _PLACEHOLDER_RE.sub(lambda m: str(merged[m.group(1)]), self.template)

    def __repr__(self) -> str:
        return f"RestEndpoint({self.template!r})"


CRUMB = RestEndpoint("crumbIssuer/api/json")

ITEM = RestEndpoint("{folder}job/{name}/api/json?depth={depth}")
ITEMS = RestEndpoint("{folder}/api/json?tree={query}")
ITEM_CONFIG = RestEndpoint("{folder}job/{name}/config.xml")
ITEM_BUILD = RestEndpoint("{folder}job/{name}/{build_type}")

QUEUE = RestEndpoint("queue/api/json?depth={depth}")
QUEUE_ITEM = RestEndpoint("queue/item/{id}/api/json?depth={depth}")
QUEUE_CANCEL_ITEM = RestEndpoint("queue/cancelItem?id={id}")

NODE = RestEndpoint("computer/{name}/api/json?depth={depth}")
NODES = RestEndpoint("computer/api/json?depth={depth}")
NODE_CONFIG = RestEndpoint("computer/{name}/config.xml")

BUILD = RestEndpoint("{folder}job/{name}/{number}/api/json?depth={depth}")
BUILD_CONSOLE_OUTPUT = RestEndpoint("{folder}job/{name}/{number}/consoleText")
BUILD_STOP = RestEndpoint("{folder}job/{name}/{number}/stop")
BUILD_REPLAY = RestEndpoint("{folder}job/{name}/{number}/replay")
BUILD_TEST_REPORT = RestEndpoint("{folder}job/{name}/{number}/testReport/api/json?depth={depth}")
