"""Tests for endpoint template resolution."""

from __future__ import annotations

import pytest

from mcp_jenkins import rest_endpoint as ep
from mcp_jenkins.rest_endpoint import MissingFieldsError, RestEndpoint


class TestRestEndpoint:
    def test_fields_are_extracted(self):
        endpoint = RestEndpoint("{folder}job/{name}/{number}/api/json?depth={depth}")
        assert endpoint.fields == {"folder", "name", "number", "depth"}

    def test_template_without_placeholders(self):
        endpoint = RestEndpoint("crumbIssuer/api/json")
        assert endpoint.fields == frozenset()
        assert endpoint.resolve() == "crumbIssuer/api/json"

    def test_resolve_with_keywords(self):
        path = ep.BUILD.resolve(folder="job/team/", name="api", number=42, depth=0)
        assert path == "job/team/job/api/42/api/json?depth=0"

    def test_resolve_with_mapping(self):
        assert ep.QUEUE_ITEM.resolve({"id": 7, "depth": 1}) == "queue/item/7/api/json?depth=1"

    def test_keywords_override_mapping(self):
        assert ep.QUEUE.resolve({"depth": 0}, depth=2) == "queue/api/json?depth=2"

    def test_empty_string_value_is_allowed(self):
        assert ep.ITEM.resolve(folder="", name="job1", depth=0) == "job/job1/api/json?depth=0"

    def test_extra_values_are_ignored(self):
        assert ep.NODES.resolve(depth=0, unused="x") == "computer/api/json?depth=0"

    def test_repeated_placeholder(self):
        endpoint = RestEndpoint("{a}/{a}")
        assert endpoint.resolve(a="x") == "x/x"

    def test_resolve_does_not_reinterpret_values(self):
        endpoint = RestEndpoint("{a}/{b}")
        assert endpoint.resolve(a="{b}", b="1") == "{b}/1"

    def test_repr(self):
        assert repr(RestEndpoint("x/{y}")) == "RestEndpoint('x/{y}')"

    @pytest.mark.parametrize("field", ["values", "self"])
    def test_placeholder_named_like_parameter(self, field):
        endpoint = RestEndpoint(f"a/{{{field}}}")
        assert endpoint.resolve(**{field: "x"}) == "a/x"


class TestMissingFields:
    def test_single_missing_field(self):
        with pytest.raises(MissingFieldsError) as exc_info:
            ep.QUEUE.resolve()
        assert exc_info.value.missing == ("depth",)
        assert str(exc_info.value) == "Missing: {'depth'}"

    def test_all_missing_fields_reported(self):
        with pytest.raises(MissingFieldsError) as exc_info:
            ep.BUILD.resolve(folder="")
        assert exc_info.value.missing == ("depth", "name", "number")

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            ep.NODE.resolve(name="agent-1")
