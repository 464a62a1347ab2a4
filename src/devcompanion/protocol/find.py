"""Find dispatcher: named search strategies that must resolve uniquely.

The peer names a strategy the way the host's plugin API spells its finders
(``findByProps``, ``findByCodeLazy``, ...). Every accepted spelling is
listed once in :data:`STRATEGY_NAMES`; anything else is rejected.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from devcompanion.errors import (
    AmbiguousResult,
    ModuleIdResolutionError,
    NoResults,
    UnknownFindStrategy,
)
from devcompanion.host import filters
from devcompanion.host.filters import CodeFilter
from devcompanion.host.registry import ModuleRegistry

logger = logging.getLogger(__name__)

__all__ = [
    "FindStrategy",
    "STRATEGY_NAMES",
    "FindResult",
    "FindDispatcher",
    "resolve_strategy",
    "find_module_id",
    "unique",
]


class FindStrategy(enum.Enum):
    """Canonical find strategies. Values are the canonical wire keys."""

    RAW = ""
    BY_PROPS = "ByProps"
    STORE = "Store"
    BY_CODE = "ByCode"
    MODULE_ID = "ModuleId"
    COMPONENT_BY_CODE = "ComponentByCode"


def _build_strategy_names() -> dict[str, FindStrategy]:
    names: dict[str, FindStrategy] = {}
    for strategy in FindStrategy:
        key = strategy.value
        for name in (f"find{key}", f"find{key}Lazy", key, f"{key}Lazy"):
            names[name] = strategy
    return names


#: Every wire name a strategy may be requested by.
STRATEGY_NAMES: dict[str, FindStrategy] = _build_strategy_names()


def resolve_strategy(name: Any) -> FindStrategy:
    """Map a wire strategy name onto its canonical strategy.

    Raises:
        UnknownFindStrategy: If the name is not listed in STRATEGY_NAMES.
    """
    strategy = STRATEGY_NAMES.get(name) if isinstance(name, str) else None
    if strategy is None:
        raise UnknownFindStrategy(name)
    return strategy


def _distinct_key(result: Any) -> Any:
    # Equal primitives are one value; anything else is compared by identity
    if isinstance(result, bool):
        return ("boolean", result)
    if isinstance(result, (int, float)):
        return ("number", result)
    if isinstance(result, (str, bytes)):
        return (type(result).__name__, result)
    return id(result)


def unique(results: Sequence[Any]) -> Any:
    """Return the single distinct element of ``results``.

    Strings, numbers and booleans are distinct by value, so ``"ab"`` found
    in two modules counts once. Other results are distinct by identity: the
    same export reached twice counts once, two equal dicts count twice.

    Raises:
        NoResults: If there are no results.
        AmbiguousResult: If more than one distinct result remains.
    """
    distinct = list({_distinct_key(result): result for result in results}.values())
    if not distinct:
        raise NoResults()
    if len(distinct) > 1:
        raise AmbiguousResult(len(distinct))
    return distinct[0]


def find_module_id(registry: ModuleRegistry, code_filter: CodeFilter) -> int:
    """Find the one module whose factory source matches ``code_filter``.

    Raises:
        ModuleIdResolutionError: If no module or several modules match.
    """
    matches = list(registry.search(code_filter))
    if not matches:
        raise ModuleIdResolutionError("No Matches Found")
    if len(matches) != 1:
        raise ModuleIdResolutionError("More than one match")
    return matches[0]


@dataclass(frozen=True)
class FindResult:
    """A uniquely resolved find.

    Attributes:
        strategy: The strategy that produced the result.
        source: Rendered source of the winning export (or module, for MODULE_ID).
        module_id: Id of the module that owns it.
    """

    strategy: FindStrategy
    source: str
    module_id: int


class FindDispatcher:
    """Runs find strategies against a registry."""

    def __init__(self, registry: ModuleRegistry) -> None:
        self._registry = registry
        self._searches: dict[FindStrategy, Callable[[Sequence[Any]], list[Any]]] = {
            FindStrategy.RAW: self._find_raw,
            FindStrategy.BY_PROPS: lambda args: self._registry.find_all(filters.by_props(*args)),
            FindStrategy.STORE: lambda args: self._registry.find_all(
                filters.by_store_name(_first(args))
            ),
            FindStrategy.BY_CODE: lambda args: self._registry.find_all(
                filters.by_code(*args, render=self._registry.render)
            ),
            FindStrategy.MODULE_ID: lambda args: list(self._registry.search(_first(args))),
            FindStrategy.COMPONENT_BY_CODE: lambda args: self._registry.find_all(
                filters.component_by_code(*args, render=self._registry.render)
            ),
        }

    def search(self, name: Any, args: Sequence[Any]) -> tuple[FindStrategy, list[Any]]:
        """Run the named strategy and return its raw results.

        Raises:
            UnknownFindStrategy: If ``name`` is not a known strategy.
        """
        strategy = resolve_strategy(name)
        logger.debug(f"Running find strategy {strategy.name} with {len(args)} args")
        return strategy, self._searches[strategy](args)

    def validate(self, name: Any, args: Sequence[Any]) -> FindStrategy:
        """Check that the named strategy matches exactly one result.

        Raises:
            UnknownFindStrategy, NoResults, AmbiguousResult
        """
        strategy, results = self.search(name, args)
        unique(results)
        return strategy

    def find(self, name: Any, args: Sequence[Any]) -> FindResult:
        """Resolve the named strategy to one result and the id of its module.

        Non-id strategies render the winning export and search the registry
        for the module whose source contains that text, because a strategy's
        result is an export, not a module.

        Raises:
            UnknownFindStrategy, NoResults, AmbiguousResult,
            ModuleIdResolutionError
        """
        strategy, results = self.search(name, args)
        found = unique(results)
        if strategy is FindStrategy.MODULE_ID:
            module_id = int(found)
            source = self._registry.lookup(module_id)
            if source is None:
                raise ModuleIdResolutionError(f"Module({module_id}) not found")
            return FindResult(strategy=strategy, source=source, module_id=module_id)
        rendered = self._registry.render(found)
        module_id = find_module_id(self._registry, [rendered])
        return FindResult(strategy=strategy, source=rendered, module_id=module_id)

    def _find_raw(self, args: Sequence[Any]) -> list[Any]:
        predicate = _first(args)
        if not callable(predicate):
            raise TypeError(f"filter is not a function (got {type(predicate).__name__})")
        return self._registry.find_all(predicate)


def _first(args: Sequence[Any]) -> Any:
    if not args:
        raise TypeError("expected at least one argument")
    return args[0]
