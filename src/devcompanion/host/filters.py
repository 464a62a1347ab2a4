"""Filters used to search the host's modules.

Two kinds of filter exist:

* **Code filters** match against a module factory's source text: a string
  that must be contained in it, a compiled pattern that must be found in it,
  or a list/tuple of those that must all match.
* **Export filters** are predicates over a module's exports. The
  constructors below build the ones the find strategies need.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Mapping
from typing import Any, Callable, Protocol, Sequence

__all__ = [
    "CodeFilter",
    "ExportFilter",
    "Renderer",
    "by_code",
    "by_props",
    "by_store_name",
    "code_matches",
    "component_by_code",
    "render_source",
]

CodeFilter = str | re.Pattern[str] | Sequence[str | re.Pattern[str]]

#: Predicate over a single export value.
ExportFilter = Callable[[Any], bool]


class Renderer(Protocol):
    def __call__(self, value: Any) -> str: ...


def code_matches(text: str, code_filter: CodeFilter) -> bool:
    """Return True if ``text`` satisfies every part of ``code_filter``."""
    if isinstance(code_filter, str):
        return code_filter in text
    if isinstance(code_filter, re.Pattern):
        return code_filter.search(text) is not None
    return all(code_matches(text, part) for part in code_filter)


def render_source(value: Any) -> str:
    """Printed form of a value: source text for functions and classes, else repr."""
    target = inspect.unwrap(value) if callable(value) else value
    if inspect.isfunction(target) or inspect.isclass(target) or inspect.ismethod(target):
        try:
            return inspect.getsource(target).strip()
        except (OSError, TypeError):
            pass
    return repr(value)


def by_props(*props: str) -> ExportFilter:
    """Match exports that expose every named property (key or attribute)."""

    def _filter(value: Any) -> bool:
        if isinstance(value, Mapping):
            return all(prop in value for prop in props)
        return all(getattr(value, prop, None) is not None for prop in props)

    return _filter


def by_store_name(name: str) -> ExportFilter:
    """Match store instances whose class declares ``display_name == name``."""

    def _filter(value: Any) -> bool:
        return getattr(type(value), "display_name", None) == name

    return _filter


def by_code(*code: str | re.Pattern[str], render: Renderer = render_source) -> ExportFilter:
    """Match callable exports whose source contains every fragment."""

    def _filter(value: Any) -> bool:
        if not callable(value):
            return False
        return code_matches(render(value), code)

    return _filter


def component_by_code(
    *code: str | re.Pattern[str], render: Renderer = render_source
) -> ExportFilter:
    """Like :func:`by_code`, but also looks inside component wrappers.

    A wrapper keeps the real component in ``type`` (memo-style, whose
    ``type`` may itself have a ``render``) or in ``render`` (forward-ref style).
    """
    matches_code = by_code(*code, render=render)

    def _filter(value: Any) -> bool:
        if matches_code(value):
            return True
        inner = getattr(value, "type", None)
        if inner is not None:
            return matches_code(getattr(inner, "render", inner))
        inner = getattr(value, "render", None)
        if inner is not None:
            return matches_code(inner)
        return False

    return _filter
