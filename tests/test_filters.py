"""Tests for devcompanion.host.filters."""

from __future__ import annotations

import re
from types import SimpleNamespace

from devcompanion.host.filters import (
    by_code,
    by_props,
    by_store_name,
    code_matches,
    component_by_code,
    render_source,
)


def button(props):
    return "button:" + props["label"]


class Memo:
    def __init__(self, inner):
        self.type = inner


class ForwardRef:
    def __init__(self, render):
        self.render = render


class SettingsStore:
    display_name = "SettingsStore"


# ---------------------------------------------------------------------------
# Code filters
# ---------------------------------------------------------------------------


def test_code_matches_substring():
    assert code_matches("return a.b", "a.b")
    assert not code_matches("return a.b", "a.c")


def test_code_matches_pattern():
    assert code_matches("x = 12", re.compile(r"\d+"))
    assert not code_matches("x = y", re.compile(r"\d+"))


def test_code_matches_all_parts():
    assert code_matches("alpha beta", ["alpha", re.compile("be+ta")])
    assert not code_matches("alpha beta", ["alpha", "gamma"])


# ---------------------------------------------------------------------------
# Export filters
# ---------------------------------------------------------------------------


def test_by_props_on_mapping_and_object():
    has_both = by_props("open", "close")
    assert has_both({"open": 1, "close": 2})
    assert has_both(SimpleNamespace(open=1, close=2))
    assert not has_both({"open": 1})
    assert not has_both(SimpleNamespace(open=1, close=None))


def test_by_store_name():
    assert by_store_name("SettingsStore")(SettingsStore())
    assert not by_store_name("OtherStore")(SettingsStore())
    assert not by_store_name("SettingsStore")({"display_name": "SettingsStore"})


def test_by_code_only_matches_callables():
    assert by_code("button:")(button)
    assert not by_code("button:")("button:")
    assert not by_code("button:", "missing")(button)


def test_by_code_uses_given_renderer():
    matcher = by_code("custom", render=lambda value: "custom text")
    assert matcher(len)


def test_component_by_code_looks_through_wrappers():
    matcher = component_by_code("button:")
    assert matcher(button)
    assert matcher(Memo(button))
    assert matcher(ForwardRef(button))
    assert matcher(Memo(ForwardRef(button)))
    assert not matcher(Memo(len))
    assert not matcher(object())


# ---------------------------------------------------------------------------
# render_source
# ---------------------------------------------------------------------------


def test_render_source_of_function_is_its_text():
    assert render_source(button).startswith("def button(props):")


def test_render_source_of_class():
    assert render_source(SettingsStore).startswith("class SettingsStore:")


def test_render_source_of_plain_value_is_repr():
    assert render_source({"a": 1}) == "{'a': 1}"


def test_render_source_of_builtin_falls_back_to_repr():
    assert render_source(len) == repr(len)
