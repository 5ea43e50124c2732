"""Unit tests for the plan_route tool orchestrator."""

import json

import pytest

from city_explorer.chat.models import FunctionCall, ToolCall
from city_explorer.chat.tools import PLAN_ROUTE_TOOL, parse_plan_route_arguments
from city_explorer.errors import GatewayError, ValidationError

from conftest import collect, run


def _call(call_id: str, arguments, name: str = "plan_route") -> ToolCall:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCall(id=call_id, function=FunctionCall(name=name, arguments=raw))


def test_tool_schema_is_plan_route():
    assert PLAN_ROUTE_TOOL["function"]["name"] == "plan_route"
    assert set(PLAN_ROUTE_TOOL["function"]["parameters"]["properties"]) == {"waypoints", "start", "via", "end", "mode"}


class TestPlanRoute:

    def test_payload_has_route_and_one_stop_per_waypoint(self, orchestrator):
        args = {
            "waypoints": [
                {"lat": 48.85, "lng": 2.35},
                {"query": "Louvre"},
                {"query": "Eiffel Tower"},
            ],
            "mode": "walking",
        }
        outcome = run(orchestrator.run_call(_call("c1", args)))
        content = json.loads(outcome.message.content)

        assert outcome.message.role == "tool"
        assert outcome.message.tool_call_id == "c1"
        assert {"coordinates", "distanceMeters", "durationSeconds"} <= set(content)
        assert len(content["stops"]) == 3
        assert content["waypointCount"] == 3
        assert content["mode"] == "walking"
        assert outcome.event.data == content
        assert outcome.event.error is None

    def test_geocoded_start_and_default_mode(self, orchestrator, geo):
        args = {"start": {"query": "Eiffel Tower"}, "end": {"lat": 48.86, "lng": 2.29}}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        content = json.loads(outcome.message.content)

        assert geo.geocode_calls == ["Eiffel Tower"]
        assert geo.route_calls[0]["mode"] == "driving"
        first = geo.route_calls[0]["waypoints"][0]
        assert (first.lat, first.lng) == (48.8584, 2.2945)
        assert content["mode"] == "driving"
        assert content["start"]["label"] == "Eiffel Tower, Paris, France"
        assert content["end"]["lat"] == 48.86

    def test_label_falls_back_to_query(self, orchestrator):
        args = {"start": {"query": "Louvre"}, "end": {"query": "Eiffel Tower"}}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        content = json.loads(outcome.message.content)
        assert content["stops"][0]["label"] == "Louvre"

    def test_coordinates_are_not_geocoded(self, orchestrator, geo):
        args = {"start": {"lat": 1.0, "lng": 2.0}, "end": {"lat": 3.0, "lng": 4.0}}
        run(orchestrator.run_call(_call("c1", args)))
        assert geo.geocode_calls == []


    def test_incomplete_coordinates_use_the_query(self, orchestrator, geo):
        args = {"start": {"lat": 48.86, "query": "Louvre"}, "end": {"query": "Eiffel Tower"}}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        assert outcome.event.error is None
        assert geo.geocode_calls == ["Louvre", "Eiffel Tower"]


class TestFailures:

    def test_malformed_json(self, orchestrator, geo):
        outcome = run(orchestrator.run_call(_call("c1", "{not json")))
        assert "error" in json.loads(outcome.message.content)
        assert outcome.event.error
        assert geo.route_calls == []

    def test_invalid_location_entry(self, orchestrator):
        outcome = run(orchestrator.run_call(_call("c1", {"start": {"lat": 1.0}, "end": {"query": "Louvre"}})))
        error = json.loads(outcome.message.content)["error"]
        assert "together" in error

    def test_bad_waypoint_names_its_position(self, orchestrator, geo):
        args = {"waypoints": [{"query": "Louvre"}, {"name": "x"}, {"query": "Eiffel Tower"}]}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        error = json.loads(outcome.message.content)["error"]
        assert "waypoints[1]:" in error
        assert geo.route_calls == []

    def test_unresolvable_place_names_position(self, orchestrator, geo):
        args = {"start": {"query": "Louvre"}, "end": {"query": "Atlantis"}}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        error = json.loads(outcome.message.content)["error"]
        assert "waypoints[1]" in error
        assert "Atlantis" in error
        assert geo.route_calls == []

    def test_routing_failure(self, orchestrator, geo):
        geo.route_error = GatewayError("Geoapify routing failed: 500", status=500)
        args = {"start": {"query": "Louvre"}, "end": {"query": "Eiffel Tower"}}
        outcome = run(orchestrator.run_call(_call("c1", args)))
        assert json.loads(outcome.message.content) == {"error": "Geoapify routing failed: 500"}
        assert outcome.event.tool == "plan_route"

    def test_unknown_tool(self, orchestrator):
        outcome = run(orchestrator.run_call(_call("c1", {}, name="book_hotel")))
        assert json.loads(outcome.message.content) == {"error": "Unknown tool: book_hotel"}

    def test_one_bad_call_in_a_batch(self, orchestrator):
        calls = [
            _call("good", {"start": {"query": "Louvre"}, "end": {"query": "Eiffel Tower"}}),
            _call("bad", "[]"),
        ]
        outcomes = run(collect(orchestrator.resolve(calls)))
        by_id = {o.message.tool_call_id: json.loads(o.message.content) for o in outcomes}

        assert set(by_id) == {"good", "bad"}
        assert "error" in by_id["bad"]
        assert "error" not in by_id["good"]
        assert by_id["good"]["distanceMeters"] > 0


def test_parse_arguments_rejects_non_object():
    with pytest.raises(ValidationError, match="JSON object"):
        parse_plan_route_arguments("[1, 2]")
