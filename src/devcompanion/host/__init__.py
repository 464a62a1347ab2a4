"""Host-side module registry: the interface the companion consumes and an in-memory host."""

from devcompanion.host.registry import InMemoryRegistry, ModuleRecord, ModuleRegistry, load_bundle

__all__ = ["InMemoryRegistry", "ModuleRecord", "ModuleRegistry", "load_bundle"]
