"""Error types for the companion protocol.

Every exception carries the exact text that is sent back to the peer as the
``error`` field of a reply, so ``str(exc)`` is the wire message.
"""

from __future__ import annotations

__all__ = [
    "CompanionError",
    "DecodeError",
    "MalformedRequest",
    "UnknownNodeType",
    "UnsupportedNodeKind",
    "PatternCompileError",
    "ExecutableEvalError",
    "UnknownFindStrategy",
    "NoResults",
    "AmbiguousResult",
    "ModuleIdResolutionError",
    "NoEffect",
    "SyntaxBroken",
    "RuleFailed",
    "UnknownCommandType",
]


class CompanionError(RuntimeError):
    """Base class for errors that become an ``ok: false`` reply."""


class DecodeError(CompanionError):
    """A frame could not be decoded into a request envelope.

    There is no nonce to reply to, so these are logged and dropped.
    """


class MalformedRequest(CompanionError):
    """A request decoded but its ``data`` payload has the wrong shape."""


class UnknownNodeType(CompanionError):
    """An expression node carried a tag the interpreter does not know."""

    def __init__(self, node_type: object) -> None:
        super().__init__(f"Unknown Node Type {node_type}")
        self.node_type = node_type


class UnsupportedNodeKind(CompanionError):
    """A known node kind was used where it is not allowed."""


class PatternCompileError(CompanionError):
    """A regex node is not a valid ``re`` pattern."""


class ExecutableEvalError(CompanionError):
    """Peer-supplied code failed to compile or evaluate."""


class UnknownFindStrategy(CompanionError):
    """No find strategy is registered under the requested name."""

    def __init__(self, name: object) -> None:
        super().__init__(f"Unknown Find Type {name}")
        self.name = name


class NoResults(CompanionError):
    """A search that must be unique matched nothing."""

    count = 0

    def __init__(self, message: str = "No results") -> None:
        super().__init__(message)


class AmbiguousResult(CompanionError):
    """A search that must be unique matched more than one module."""

    def __init__(
        self,
        count: int,
        message: str = "Found more than one result! Make this filter more specific",
    ) -> None:
        super().__init__(message)
        self.count = count


class ModuleIdResolutionError(CompanionError):
    """The module owning a find result could not be pinned to a single id."""


class NoEffect(CompanionError):
    """A rewrite rule left the source unchanged."""

    def __init__(self) -> None:
        super().__init__("Had no effect")


class SyntaxBroken(CompanionError):
    """A rewrite rule produced source that no longer parses."""


class RuleFailed(CompanionError):
    """Wraps the failure of one rule in a patch simulation.

    Attributes:
        index: 1-based position of the failing rule.
        cause: The underlying error.
    """

    def __init__(self, index: int, cause: BaseException | str) -> None:
        super().__init__(f"Replacement {index} failed: {cause}")
        self.index = index
        self.cause = cause


class UnknownCommandType(CompanionError):
    """The request envelope names a command nobody handles."""

    def __init__(self, command_type: object) -> None:
        super().__init__(f"Unknown Type {command_type}")
        self.command_type = command_type
