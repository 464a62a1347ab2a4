"""Tests for devcompanion.protocol.commands: request routing and replies."""

from __future__ import annotations

import json
import logging

import pytest

from devcompanion.config import CompanionSettings
from devcompanion.host.registry import InMemoryRegistry
from devcompanion.protocol.commands import CommandHandler, wire_type_name
from devcompanion.protocol.schema import Request


def roundtrip(handler: CommandHandler, message: dict) -> dict:
    """Send one JSON request through the handler and decode the reply."""
    reply = handler.handle_frame(json.dumps(message))
    assert reply is not None
    return json.loads(reply)


def string(value):
    return {"type": "string", "value": value}


# ---------------------------------------------------------------------------
# Protocol scenarios
# ---------------------------------------------------------------------------


def test_extract_by_id_returns_source():
    handler = CommandHandler(InMemoryRegistry({42: "function(e){return e}"}, eager=False))
    reply = roundtrip(
        handler, {"type": "extract", "data": {"extractType": "id", "idOrSearch": 42}, "nonce": 1}
    )
    assert reply == {
        "nonce": 1,
        "ok": True,
        "type": "extract",
        "data": "function(e){return e}",
        "moduleNumber": 42,
    }


def test_extract_by_id_rejects_non_numeric_id(handler):
    reply = roundtrip(
        handler, {"type": "extract", "data": {"extractType": "id", "idOrSearch": "x"}, "nonce": 2}
    )
    assert reply == {
        "nonce": 2,
        "ok": False,
        "error": "the provided moduleID is not a number. Got: string",
    }


def test_patch_target_matching_two_modules(handler):
    reply = roundtrip(
        handler,
        {
            "type": "testPatch",
            "data": {"find": "answer", "replacement": [{"match": string("41"), "replace": string("40")}]},
            "nonce": 3,
        },
    )
    assert reply == {
        "nonce": 3,
        "ok": False,
        "error": "Expected exactly one 'find' matches, found 2",
    }


def test_patch_with_one_valid_rule(handler):
    reply = roundtrip(
        handler,
        {
            "type": "testPatch",
            "data": {
                "find": "'hello '",
                "replacement": [{"match": string("'hello '"), "replace": string("'hi '")}],
            },
            "nonce": 4,
        },
    )
    assert reply == {"nonce": 4, "ok": True}


def test_patch_against_commented_module():
    handler = CommandHandler(
        InMemoryRegistry(
            {
                1: (
                    "lambda module, exports, require: dict(\n"
                    "    greet=lambda name: 'hello ' + name,  # say hi\n"
                    "    other=1,\n"
                    ")"
                ),
            }
        )
    )
    reply = roundtrip(
        handler,
        {
            "type": "testPatch",
            "data": {
                "find": "'hello '",
                "replacement": [{"match": string("'hello '"), "replace": string("'hi '")}],
            },
            "nonce": 4,
        },
    )
    assert reply == {"nonce": 4, "ok": True}


def test_find_by_props_with_no_results(handler):
    reply = roundtrip(
        handler,
        {"type": "testFind", "data": {"type": "findByProps", "args": [string("foo")]}, "nonce": 5},
    )
    assert reply == {"nonce": 5, "ok": False, "error": "Failed to find: No results"}


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def test_unknown_request_type(handler):
    reply = roundtrip(handler, {"type": "bogus", "data": {}, "nonce": 6})
    assert reply == {"nonce": 6, "ok": False, "error": "Unknown Type bogus"}


def test_missing_request_type(handler):
    reply = roundtrip(handler, {"data": {}, "nonce": 7})
    assert reply == {"nonce": 7, "ok": False, "error": "Unknown Type None"}


def test_reply_without_nonce_when_request_has_none(handler):
    reply = roundtrip(handler, {"type": "bogus"})
    assert "nonce" not in reply
    assert reply["ok"] is False


def test_malformed_frame_is_dropped(handler, caplog):
    with caplog.at_level(logging.ERROR, logger="devcompanion.protocol.commands"):
        assert handler.handle_frame("{not json") is None
    assert "Dropping frame" in caplog.text


def test_malformed_payload(handler):
    reply = roundtrip(handler, {"type": "testPatch", "data": {"replacement": []}, "nonce": 8})
    assert reply["ok"] is False
    assert reply["error"].startswith("Malformed testPatch request: find")


def test_unexpected_exception_becomes_error_reply(caplog):
    class BrokenRegistry(InMemoryRegistry):
        def lookup(self, module_id):
            raise RuntimeError("registry exploded")

    handler = CommandHandler(BrokenRegistry({1: "lambda module, exports, require: 1"}))
    with caplog.at_level(logging.ERROR, logger="devcompanion.protocol.commands"):
        reply = roundtrip(
            handler, {"type": "extract", "data": {"extractType": "id", "idOrSearch": 1}, "nonce": 9}
        )
    assert reply == {"nonce": 9, "ok": False, "error": "RuntimeError: registry exploded"}
    assert "Unexpected error handling extract" in caplog.text


def test_module_list_push(handler):
    push = handler.module_list()
    assert push.nonce is None
    assert push.type == "moduleList"
    assert push.ok is True
    assert push.data == ["10", "11", "12", "13", "14", "15"]


@pytest.mark.parametrize(
    ("value", "name"),
    [(None, "object"), (True, "boolean"), (3, "number"), (2.5, "number"), ("x", "string"), ([], "object"), ({}, "object")],
)
def test_wire_type_name(value, name):
    assert wire_type_name(value) == name


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------


def extract(handler, nonce=1, **data):
    return roundtrip(handler, {"type": "extract", "data": data, "nonce": nonce})


def test_extract_by_id_boolean_is_not_a_number(handler):
    reply = extract(handler, extractType="id", idOrSearch=True)
    assert reply["error"] == "the provided moduleID is not a number. Got: boolean"


def test_extract_by_id_null_is_an_object(handler):
    reply = extract(handler, extractType="id", idOrSearch=None)
    assert reply["error"] == "the provided moduleID is not a number. Got: object"


def test_extract_by_id_without_id_is_undefined(handler):
    reply = extract(handler, extractType="id")
    assert reply == {
        "nonce": 1,
        "ok": False,
        "error": "the provided moduleID is not a number. Got: undefined",
    }


def test_extract_by_id_missing_module(handler):
    reply = extract(handler, extractType="id", idOrSearch=99)
    assert reply == {"nonce": 1, "ok": False, "error": "Module(99) not found"}


def test_extract_by_search(handler, bundle_sources):
    reply = extract(handler, extractType="search", idOrSearch="'bye '")
    assert reply == {
        "nonce": 1,
        "ok": True,
        "type": "extract",
        "data": bundle_sources[10],
        "moduleNumber": 10,
    }


def test_extract_by_search_ambiguous(handler):
    reply = extract(handler, extractType="search", idOrSearch="answer")
    assert reply["error"] == "Error: More than one match"


def test_extract_by_search_without_match(handler):
    reply = extract(handler, extractType="search", idOrSearch="no such text")
    assert reply["error"] == "Error: No Matches Found"


def test_extract_by_find(handler, bundle_sources):
    reply = extract(
        handler,
        extractType="find",
        findType="findByProps",
        findArgs=[string("version")],
    )
    assert reply == {
        "nonce": 1,
        "ok": True,
        "type": "extract",
        "find": True,
        "data": bundle_sources[11],
        "moduleNumber": 11,
    }


def test_extract_by_find_with_function_predicate(handler):
    reply = extract(
        handler,
        extractType="find",
        findType="find",
        findArgs=[{"type": "function", "value": "lambda value: value == '1.2.3'"}],
    )
    assert reply["ok"] is True
    assert reply["data"] == "'1.2.3'"
    assert reply["moduleNumber"] == 11


def test_extract_by_find_bad_args(handler):
    reply = extract(
        handler, extractType="find", findType="findByProps", findArgs=[{"type": "number", "value": 1}]
    )
    assert reply["error"] == "Failed to parse args: Unknown Node Type number"


def test_extract_by_find_unknown_strategy(handler):
    reply = extract(handler, extractType="find", findType="findEverything", findArgs=[])
    assert reply["error"] == "Unknown Find Type findEverything"


def test_extract_by_find_ambiguous(handler):
    reply = extract(handler, extractType="find", findType="findByProps", findArgs=[string("answer")])
    assert reply["error"] == "Failed to find: Found more than one result! Make this filter more specific"


def test_extract_unknown_type(handler):
    reply = extract(handler, extractType="bogus", idOrSearch=1)
    assert reply["error"] == "Unknown Extract type. Got: bogus"


# ---------------------------------------------------------------------------
# testFind / testPatch
# ---------------------------------------------------------------------------


def find(handler, strategy, args, nonce=1):
    return roundtrip(handler, {"type": "testFind", "data": {"type": strategy, "args": args}, "nonce": nonce})


def test_test_find_unique(handler):
    assert find(handler, "findStore", [string("UserStore")]) == {"nonce": 1, "ok": True}


def test_test_find_unknown_strategy(handler):
    assert find(handler, "findNothing", []) == {
        "nonce": 1,
        "ok": False,
        "error": "Unknown Find Type findNothing",
    }


def test_test_find_raw_with_non_callable(handler):
    reply = find(handler, "find", [string("not a function")])
    assert reply["error"] == "Failed to find: TypeError: filter is not a function (got str)"


def test_test_find_with_evaluation_disabled(registry):
    handler = CommandHandler(registry, CompanionSettings(allow_code_evaluation=False))
    reply = find(handler, "find", [{"type": "function", "value": "lambda v: True"}])
    assert reply["error"] == "Failed to parse args: Code evaluation is disabled"


def test_test_patch_rule_failure(handler):
    reply = roundtrip(
        handler,
        {
            "type": "testPatch",
            "data": {
                "find": "'hello '",
                "replacement": [
                    {"match": string("'hello '"), "replace": string("'hi '")},
                    {"match": string("missing"), "replace": string("x")},
                ],
            },
            "nonce": 12,
        },
    )
    assert reply == {"nonce": 12, "ok": False, "error": "Replacement 2 failed: Had no effect"}


def test_handle_accepts_request_models(handler):
    reply = handler.handle(Request(type="testFind", data={"type": "findStore", "args": [string("UserStore")]}, nonce=3))
    assert reply.ok is True
    assert reply.nonce == 3
