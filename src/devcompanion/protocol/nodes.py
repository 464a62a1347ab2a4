"""Expression node interpreter.

Turns the tagged wire nodes into live values: strings stay strings, regex
nodes become compiled ``re`` patterns, function nodes are evaluated as Python
by a :class:`CodeEvaluator`.

The evaluator is the one place peer-supplied code runs. The peer is a
developer tool on localhost that already has full access to this machine, so
evaluating its code grants it nothing new. The capability can still be
switched off with ``CompanionSettings.allow_code_evaluation``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable

from devcompanion.errors import (
    ExecutableEvalError,
    PatternCompileError,
    UnknownNodeType,
)
from devcompanion.protocol.schema import (
    FunctionNode,
    RegexNode,
    StringNode,
    parse_node,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CodeEvaluator",
    "IDENTIFIER_PATTERN",
    "canonicalize_replace",
    "compile_regex",
    "materialize",
    "materialize_all",
]

#: Substituted for ``\i`` in match patterns.
IDENTIFIER_PATTERN = r"(?:[A-Za-z_][\w]*)"
_IDENTIFIER_SHORTHAND = re.compile(r"(?<!\\)\\i")

# JS-style flag letters. ``g`` and ``u`` are accepted and ignored: every
# rewrite touches the first occurrence only, and ``re`` is unicode already.
_REGEX_FLAGS: dict[str, re.RegexFlag | int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "a": re.ASCII,
    "u": 0,
    "g": 0,
}


class CodeEvaluator:
    """Evaluates peer-supplied Python expressions.

    Args:
        enabled: When False, every evaluation fails with ExecutableEvalError.
        namespace: Extra globals visible to evaluated code.
    """

    def __init__(self, enabled: bool = True, namespace: dict[str, Any] | None = None) -> None:
        self.enabled = enabled
        self._namespace = dict(namespace or {})

    def evaluate(self, source: str) -> Any:
        """Compile and evaluate ``source`` as a single expression.

        Each call gets a fresh globals dict so evaluations cannot see each
        other.

        Raises:
            ExecutableEvalError: If evaluation is disabled or the code fails.
        """
        if not self.enabled:
            raise ExecutableEvalError("Code evaluation is disabled")
        logger.debug(f"Evaluating peer code: {source!r}")
        try:
            code = compile(source.strip(), "<devcompanion>", "eval")
            return eval(code, {"re": re, **self._namespace})  # noqa: S307
        except Exception as exc:
            raise ExecutableEvalError(f"{type(exc).__name__}: {exc}") from exc


def compile_regex(pattern: str, flags: str = "") -> re.Pattern[str]:
    """Compile a regex node body.

    ``\\i`` is shorthand for "an identifier" and expands to IDENTIFIER_PATTERN
    before compiling.

    Raises:
        PatternCompileError: On an unknown flag letter or an invalid pattern.
    """
    compiled_flags = 0
    for letter in flags:
        if letter not in _REGEX_FLAGS:
            raise PatternCompileError(f"Invalid flags supplied to RegExp: '{flags}'")
        compiled_flags |= _REGEX_FLAGS[letter]
    expanded = _IDENTIFIER_SHORTHAND.sub(lambda _: IDENTIFIER_PATTERN, pattern)
    try:
        return re.compile(expanded, compiled_flags)
    except re.error as exc:
        raise PatternCompileError(f"Invalid regular expression: /{pattern}/: {exc}") from exc


def materialize(raw: Any, evaluator: CodeEvaluator) -> Any:
    """Turn one wire node into its runtime value.

    Raises:
        UnknownNodeType: For tags other than string/regex/function.
        PatternCompileError: For invalid regex nodes.
        ExecutableEvalError: For function nodes that fail to evaluate.
    """
    node = parse_node(raw)
    if isinstance(node, StringNode):
        return node.value
    if isinstance(node, RegexNode):
        return compile_regex(node.value.pattern, node.value.flags)
    if isinstance(node, FunctionNode):
        return evaluator.evaluate(node.value)
    raise UnknownNodeType(getattr(node, "type", None))


def materialize_all(nodes: Iterable[Any], evaluator: CodeEvaluator) -> list[Any]:
    """Materialize an argument list left to right, stopping at the first failure."""
    return [materialize(node, evaluator) for node in nodes]


def canonicalize_replace(replace: Any, plugin_name: str) -> Any:
    """Point ``$self`` at the plugin instance inside the host.

    For callables the substitution is applied to whatever they return.
    """
    self_reference = f"plugins[{json.dumps(plugin_name)}]"
    if isinstance(replace, str):
        return replace.replace("$self", self_reference)
    if not callable(replace):
        return replace

    def canonical(*args: Any) -> Any:
        result = replace(*args)
        if isinstance(result, str):
            return result.replace("$self", self_reference)
        return result

    return canonical
