"""Patch simulation.

Dry-runs an ordered list of match/replace rules against one module's
factory source and proves that every rule applies and the result still
parses. Nothing is written back to the registry.
"""

from __future__ import annotations

import ast
import io
import logging
import re
import tokenize
from typing import Any, Sequence

from devcompanion.errors import (
    AmbiguousResult,
    CompanionError,
    NoEffect,
    NoResults,
    RuleFailed,
    SyntaxBroken,
    UnsupportedNodeKind,
)
from devcompanion.host.registry import ModuleRegistry
from devcompanion.protocol.nodes import CodeEvaluator, canonicalize_replace, materialize
from devcompanion.protocol.schema import (
    FunctionNode,
    RegexNode,
    ReplacementRule,
    StringNode,
    parse_node,
)

logger = logging.getLogger(__name__)

__all__ = [
    "resolve_target",
    "normalize_source",
    "apply_first",
    "check_syntax",
    "simulate_patch",
]

# Factories sit inside the bundle as ``0,lambda ...`` entries.
_FACTORY_MARKER = "lambda"
_FACTORY_PREFIX = "0,"

_LAYOUT_TOKENS = frozenset(
    {
        tokenize.COMMENT,
        tokenize.NL,
        tokenize.NEWLINE,
        tokenize.INDENT,
        tokenize.DEDENT,
        tokenize.ENDMARKER,
    }
)


def resolve_target(registry: ModuleRegistry, find: str) -> tuple[int, str]:
    """Return ``(id, source)`` of the single module matching ``find``.

    Raises:
        NoResults: If no module matches.
        AmbiguousResult: If several modules match.
    """
    candidates = registry.search(find)
    if len(candidates) != 1:
        message = f"Expected exactly one 'find' matches, found {len(candidates)}"
        if not candidates:
            raise NoResults(message)
        raise AmbiguousResult(len(candidates), message)
    [(module_id, source)] = candidates.items()
    return module_id, source


def normalize_source(source: str) -> str:
    """Put factory source in the shape it has inside the bundle.

    Line breaks are dropped and a bare ``lambda`` gets the ``0,`` prefix it
    carries in the bundle. For Python source the join goes token by token:
    comments and backslash continuations go with their line break, while
    string literals and the spacing between tokens are kept as written, so
    rules still match the text they were written against. Source that is
    not Python just loses its newlines.
    """
    try:
        ast.parse(source)
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (tokenize.TokenError, SyntaxError, ValueError):
        normalized = source.replace("\n", "")
    else:
        normalized = _join_lines(source, tokens)
    if normalized.startswith(_FACTORY_MARKER):
        normalized = _FACTORY_PREFIX + normalized
    return normalized


def _join_lines(source: str, tokens: Sequence[tokenize.TokenInfo]) -> str:
    line_starts = [0]
    for line in io.StringIO(source):
        line_starts.append(line_starts[-1] + len(line))

    def offset(position: tuple[int, int]) -> int:
        row, col = position
        return line_starts[row - 1] + col

    parts: list[str] = []
    end = 0
    for token in tokens:
        start = offset(token.start)
        # Between tokens there is only whitespace and continuation backslashes
        gap = source[end:start]
        parts.append(gap.replace("\\\n", "").replace("\n", ""))
        if token.type not in _LAYOUT_TOKENS:
            parts.append(source[start : offset(token.end)])
        end = max(end, offset(token.end))
    return "".join(parts)


def apply_first(source: str, match: str | re.Pattern[str], replace: Any) -> str:
    """Rewrite only the first occurrence of ``match`` in ``source``.

    A string match with a string replacement is literal; a pattern match
    expands ``\\1`` / ``\\g<name>`` templates; a callable replacement gets the
    ``re.Match`` and must return ``str``.
    """
    if isinstance(match, str):
        if isinstance(replace, str):
            return source.replace(match, replace, 1)
        match = re.compile(re.escape(match))
    return match.sub(replace, source, count=1)


def check_syntax(source: str, filename: str = "<patch>") -> None:
    """Parse ``source`` without running it.

    Raises:
        SyntaxBroken: If the source does not parse.
    """
    try:
        ast.parse(source, filename=filename)
    except SyntaxError as exc:
        raise SyntaxBroken(f"SyntaxError: {exc}") from exc
    except ValueError as exc:
        raise SyntaxBroken(f"Parse error: {exc}") from exc


def simulate_patch(
    registry: ModuleRegistry,
    find: str,
    rules: Sequence[ReplacementRule],
    evaluator: CodeEvaluator,
    plugin_name: str,
) -> str:
    """Apply ``rules`` in order to the module matching ``find``.

    Returns:
        The rewritten source. Callers that only validate may discard it.

    Raises:
        NoResults, AmbiguousResult: If ``find`` does not match exactly one module.
        RuleFailed: On the first rule that fails, carrying its 1-based index.
    """
    module_id, source = resolve_target(registry, find)
    filename = f"<module {module_id}>"
    source = normalize_source(source)
    logger.info(f"Simulating {len(rules)} replacement(s) against module {module_id}")

    for index, rule in enumerate(rules, start=1):
        try:
            source = _apply_rule(source, rule, evaluator, plugin_name, filename)
        except CompanionError as exc:
            raise RuleFailed(index, exc) from exc
        except (re.error, TypeError, ValueError, IndexError) as exc:
            raise RuleFailed(index, f"{type(exc).__name__}: {exc}") from exc

    return source


def _apply_rule(
    source: str,
    rule: ReplacementRule,
    evaluator: CodeEvaluator,
    plugin_name: str,
    filename: str,
) -> str:
    match_node = parse_node(rule.match)
    if not isinstance(match_node, (StringNode, RegexNode)):
        raise UnsupportedNodeKind(f"match must be a string or regex node, got {match_node.type}")
    replace_node = parse_node(rule.replace)
    if not isinstance(replace_node, (StringNode, FunctionNode)):
        raise UnsupportedNodeKind(
            f"replace must be a string or function node, got {replace_node.type}"
        )

    match = materialize(match_node, evaluator)
    replace = canonicalize_replace(materialize(replace_node, evaluator), plugin_name)
    if not isinstance(replace, str) and not callable(replace):
        raise UnsupportedNodeKind(
            f"replace function evaluated to {type(replace).__name__}, not a callable"
        )

    rewritten = apply_first(source, match, replace)
    if rewritten == source:
        raise NoEffect()
    check_syntax(rewritten, filename)
    return rewritten
