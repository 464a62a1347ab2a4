"""Module registry interface and the in-memory reference host.

The companion never owns the module registry: it is the host's map from
numeric module ids to module factories. :class:`ModuleRegistry` is the
surface the companion consumes; :class:`InMemoryRegistry` implements it over
a bundle of factory sources so the companion can run against a saved bundle
and be tested without a real host.

A bundle maps ids to **factory source**, one Python expression per module::

    {
        "42": "lambda module, exports, require: {'greet': lambda name: 'hi ' + name}",
        "43": "lambda module, exports, require: exports.update(answer=42)"
    }

A factory is called as ``factory(module, exports, require)``. If it returns
something other than ``None`` that value becomes the module's exports,
otherwise the (possibly mutated) ``exports`` dict does.
"""

from __future__ import annotations

import json
import linecache
import logging
import weakref
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Protocol, runtime_checkable

from devcompanion.host.filters import CodeFilter, ExportFilter, code_matches, render_source

logger = logging.getLogger(__name__)

__all__ = ["ModuleRegistry", "ModuleRecord", "InMemoryRegistry", "load_bundle"]


@runtime_checkable
class ModuleRegistry(Protocol):
    """Read-only view of the host's loaded modules."""

    def lookup(self, module_id: int) -> str | None:
        """Return the factory source of ``module_id``, or None if unknown."""
        ...

    def search(self, code_filter: CodeFilter) -> dict[int, str]:
        """Return ``{id: source}`` for every module whose source matches."""
        ...

    def module_ids(self) -> list[int]:
        """Return the ids of all loaded modules."""
        ...

    def find_all(self, predicate: ExportFilter) -> list[Any]:
        """Return every export value for which ``predicate`` is true."""
        ...

    def render(self, value: Any) -> str:
        """Return the host's printed form of an export value."""
        ...


@dataclass
class ModuleRecord:
    """One module of the bundle and, once required, its exports."""

    module_id: int
    source: str
    exports: Any = None
    loaded: bool = False
    namespace: dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return f"<module {self.module_id}>"


class InMemoryRegistry:
    """Module registry backed by a dict of factory sources.

    Factories are compiled under the filename ``<module N>`` and their text
    is registered with :mod:`linecache`, so ``inspect.getsource`` works on
    the functions and classes they define.

    Args:
        sources: Mapping of module id to factory source.
        eager: Require every module at construction time. Factories that
            raise are logged and left unloaded.
    """

    def __init__(self, sources: Mapping[int | str, str] | None = None, eager: bool = True) -> None:
        self._modules: dict[int, ModuleRecord] = {}
        self._loading: set[int] = set()
        self._cache_entries: dict[str, tuple[int, None, list[str], str]] = {}
        weakref.finalize(self, _forget_lines, self._cache_entries)
        for module_id, source in (sources or {}).items():
            self.add(int(module_id), source)
        if eager:
            self.load_all()

    @classmethod
    def from_bundle(cls, path: str | Path, eager: bool = True) -> InMemoryRegistry:
        """Build a registry from a JSON bundle file."""
        return cls(load_bundle(path), eager=eager)

    def add(self, module_id: int, source: str) -> ModuleRecord:
        """Register a module factory without running it.

        Adding an id that is already present replaces that module.
        """
        record = ModuleRecord(module_id=module_id, source=source)
        self._modules[module_id] = record
        text = source if source.endswith("\n") else source + "\n"
        entry = (len(text), None, text.splitlines(keepends=True), record.filename)
        linecache.cache[record.filename] = entry
        self._cache_entries[record.filename] = entry
        return record

    def remove(self, module_id: int) -> None:
        """Drop a module and its source lines.

        Raises:
            KeyError: If ``module_id`` is not in the bundle.
        """
        record = self._modules.pop(module_id)
        entry = self._cache_entries.pop(record.filename, None)
        if entry is not None and linecache.cache.get(record.filename) is entry:
            del linecache.cache[record.filename]

    def close(self) -> None:
        """Forget the source lines this registry put in :mod:`linecache`."""
        _forget_lines(self._cache_entries)

    def require(self, module_id: int) -> Any:
        """Run a module's factory (once) and return its exports.

        A module that is required while it is still loading gets its
        partially filled ``exports`` dict, as in any cyclic loader.

        Raises:
            KeyError: If ``module_id`` is not in the bundle.
        """
        record = self._modules[module_id]
        if record.loaded or module_id in self._loading:
            return record.exports
        self._loading.add(module_id)
        try:
            exports: dict[str, Any] = {}
            module = SimpleNamespace(id=module_id, exports=exports)
            record.exports = exports
            code = compile(record.source, record.filename, "eval")
            factory = eval(code, record.namespace)  # noqa: S307
            result = factory(module, exports, self.require)
            if result is not None:
                record.exports = result
            elif module.exports is not exports:
                record.exports = module.exports
            record.loaded = True
        finally:
            self._loading.discard(module_id)
        return record.exports

    def load_all(self) -> None:
        for module_id in list(self._modules):
            try:
                self.require(module_id)
            except Exception as exc:
                logger.warning(f"Module {module_id} failed to load: {type(exc).__name__}: {exc}")

    # ModuleRegistry

    def lookup(self, module_id: int) -> str | None:
        record = self._modules.get(module_id)
        return record.source if record else None

    def search(self, code_filter: CodeFilter) -> dict[int, str]:
        return {
            module_id: record.source
            for module_id, record in self._modules.items()
            if code_matches(record.source, code_filter)
        }

    def module_ids(self) -> list[int]:
        return list(self._modules)

    def find_all(self, predicate: ExportFilter) -> list[Any]:
        """Check each loaded module's exports, then each value of mapping exports."""
        results: list[Any] = []
        for record in self._modules.values():
            if not record.loaded:
                continue
            exports = record.exports
            if _safe_call(predicate, exports):
                results.append(exports)
                continue
            if isinstance(exports, Mapping):
                results.extend(value for value in exports.values() if _safe_call(predicate, value))
        return results

    def render(self, value: Any) -> str:
        """Exports objects render as their factory source, other values as source or repr."""
        for record in self._modules.values():
            if record.loaded and record.exports is value and not callable(value):
                return record.source
        return render_source(value)


def _forget_lines(entries: dict[str, tuple[int, None, list[str], str]]) -> None:
    # Another registry may have re-registered the same filename since
    for filename, entry in entries.items():
        if linecache.cache.get(filename) is entry:
            del linecache.cache[filename]
    entries.clear()


def _safe_call(predicate: ExportFilter, value: Any) -> bool:
    try:
        return bool(predicate(value))
    except Exception:
        return False


def load_bundle(path: str | Path) -> dict[int, str]:
    """Read a JSON bundle of ``{"id": "factory source"}``.

    Raises:
        ValueError: If the file is not a JSON object of string sources.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Bundle {path} must be a JSON object, got {type(data).__name__}")
    bundle: dict[int, str] = {}
    for module_id, source in data.items():
        if not isinstance(source, str):
            raise ValueError(f"Module {module_id} in {path} is not a source string")
        bundle[int(module_id)] = source
    return bundle
