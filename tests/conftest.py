"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from devcompanion.config import CompanionSettings, ReconnectConfig
from devcompanion.host.registry import InMemoryRegistry
from devcompanion.protocol.commands import CommandHandler
from devcompanion.protocol.nodes import CodeEvaluator
from devcompanion.testing import RecordingNotifier

# A small bundle exercising each kind of export the find strategies look at:
# plain functions (10, 13), a mutated exports dict (11), a store instance (12),
# a second module sharing a prop with 11 (14) and a memo-style component (15).
SAMPLE_BUNDLE: dict[int, str] = {
    10: (
        "lambda module, exports, require: dict(\n"
        "    greet=lambda name: 'hello ' + name,\n"
        "    farewell=lambda name: 'bye ' + name,\n"
        ")"
    ),
    11: (
        "lambda module, exports, require: exports.update(\n"
        "    version='1.2.3',\n"
        "    answer=42,\n"
        ")"
    ),
    12: (
        "lambda module, exports, require: "
        "type('UserStore', (), {'display_name': 'UserStore', 'users': ()})()"
    ),
    13: (
        "lambda module, exports, require: dict(\n"
        "    shout=lambda text: text.upper() + '!',\n"
        ")"
    ),
    14: "lambda module, exports, require: {'answer': 41}",
    15: (
        "lambda module, exports, require: dict(\n"
        "    Button=type('Memo', (), {'type': staticmethod(lambda props: 'button:' + props['label'])})(),\n"
        ")"
    ),
}


@pytest.fixture
def bundle_sources() -> dict[int, str]:
    return dict(SAMPLE_BUNDLE)


@pytest.fixture
def registry(bundle_sources) -> InMemoryRegistry:
    """Registry with every sample module loaded."""
    return InMemoryRegistry(bundle_sources)


@pytest.fixture
def bundle_file(tmp_path: Path, bundle_sources) -> Path:
    """The sample bundle saved as JSON, the way the CLI reads it."""
    path = tmp_path / "bundle.json"
    path.write_text(json.dumps({str(k): v for k, v in bundle_sources.items()}))
    return path


@pytest.fixture
def evaluator() -> CodeEvaluator:
    return CodeEvaluator()


@pytest.fixture
def handler(registry) -> CommandHandler:
    return CommandHandler(registry, CompanionSettings(plugin_name="Demo"))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fast_settings() -> CompanionSettings:
    """Settings with delays short enough for tests."""
    return CompanionSettings(
        host="127.0.0.1",
        reconnect_delay=0.01,
        open_timeout=2.0,
        reconnect=ReconnectConfig(initial_delay=0.01, max_retries=3, jitter=False),
    )
