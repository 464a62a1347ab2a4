"""The companion wire protocol.

- schema: request/reply envelopes and expression nodes (pydantic models)
- nodes: expression node interpreter and the peer code evaluator
- find: find strategies that must resolve to exactly one module
- patch: patch simulation against a module's factory source
- commands: request routing and reply construction
"""

from devcompanion.protocol.commands import CommandHandler
from devcompanion.protocol.find import FindDispatcher, FindResult, FindStrategy
from devcompanion.protocol.nodes import CodeEvaluator, materialize, materialize_all
from devcompanion.protocol.patch import simulate_patch
from devcompanion.protocol.schema import Reply, Request, decode_request, encode_reply

__all__ = [
    "CodeEvaluator",
    "CommandHandler",
    "FindDispatcher",
    "FindResult",
    "FindStrategy",
    "Reply",
    "Request",
    "decode_request",
    "encode_reply",
    "materialize",
    "materialize_all",
    "simulate_patch",
]
