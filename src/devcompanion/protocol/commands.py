"""Command handlers for peer requests.

:class:`CommandHandler` turns one decoded request into exactly one reply.
Errors raised while handling a request never escape: they become an
``ok: false`` reply carrying the error text. Frames that cannot be decoded
have no nonce to answer, so they are logged and dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from devcompanion.config import DEFAULT_SETTINGS, CompanionSettings
from devcompanion.errors import (
    CompanionError,
    DecodeError,
    MalformedRequest,
    ModuleIdResolutionError,
    NoResults,
    UnknownCommandType,
    UnknownFindStrategy,
)
from devcompanion.host.registry import ModuleRegistry
from devcompanion.protocol.find import FindDispatcher, find_module_id
from devcompanion.protocol.nodes import CodeEvaluator, materialize_all
from devcompanion.protocol.patch import simulate_patch
from devcompanion.protocol.schema import (
    ExtractData,
    FindData,
    PatchData,
    Reply,
    Request,
    decode_request,
    encode_reply,
    parse_payload,
)

logger = logging.getLogger(__name__)

__all__ = ["CommandHandler", "wire_type_name"]

CommandFn = Callable[[int | None, Any], Reply]


def wire_type_name(value: Any) -> str:
    """Name a JSON value's type the way the peer's ``typeof`` spells it.

    ``null`` is an ``object`` there; a value that was never sent is
    ``undefined`` and is spelled by the caller.
    """
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def _describe(exc: Exception) -> str:
    if isinstance(exc, CompanionError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


class CommandHandler:
    """Routes requests by ``type`` and produces correlated replies.

    Args:
        registry: The host module registry to inspect.
        settings: Companion settings (plugin name, code evaluation switch).
        evaluator: Evaluator for function nodes. Defaults to one honouring
            ``settings.allow_code_evaluation``.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        settings: CompanionSettings = DEFAULT_SETTINGS,
        evaluator: CodeEvaluator | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._evaluator = evaluator or CodeEvaluator(enabled=settings.allow_code_evaluation)
        self._finder = FindDispatcher(registry)
        self._commands: dict[str, CommandFn] = {
            "extract": self.extract,
            "testPatch": self.test_patch,
            "testFind": self.test_find,
        }
        self._extractors: dict[str, Callable[[int | None, ExtractData], Reply]] = {
            "id": self._extract_by_id,
            "search": self._extract_by_search,
            "find": self._extract_by_find,
        }

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    def module_list(self) -> Reply:
        """Unsolicited push announcing every module id."""
        return Reply(
            type="moduleList",
            ok=True,
            data=[str(module_id) for module_id in self._registry.module_ids()],
        )

    def handle_frame(self, frame: str | bytes) -> str | None:
        """Decode a text frame, handle it, and return the encoded reply.

        Returns:
            The reply frame, or None when the frame could not be decoded.
        """
        try:
            request = decode_request(frame)
        except DecodeError as exc:
            logger.error(f"Dropping frame: {exc}\n{frame!r}")
            return None
        return encode_reply(self.handle(request))

    def handle(self, request: Request) -> Reply:
        """Run one request and convert any failure into an error reply."""
        logger.info(f"Received Message: {request.type} (nonce={request.nonce})")
        logger.debug(f"Message data: {request.data!r}")
        command = self._commands.get(request.type) if isinstance(request.type, str) else None
        try:
            if command is None:
                raise UnknownCommandType(request.type)
            return command(request.nonce, request.data)
        except CompanionError as exc:
            logger.info(f"{request.type} (nonce={request.nonce}) failed: {exc}")
            return Reply.failure(request.nonce, str(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error handling {request.type} (nonce={request.nonce})")
            return Reply.failure(request.nonce, _describe(exc))

    # Commands

    def extract(self, nonce: int | None, data: Any) -> Reply:
        """Return a module's source, located by id, by search text, or by a find strategy."""
        payload = parse_payload(ExtractData, "extract", data)
        extractor = (
            self._extractors.get(payload.extract_type)
            if isinstance(payload.extract_type, str)
            else None
        )
        if extractor is None:
            raise MalformedRequest(f"Unknown Extract type. Got: {payload.extract_type}")
        return extractor(nonce, payload)

    def test_patch(self, nonce: int | None, data: Any) -> Reply:
        """Dry-run replacement rules; the reply only says whether they all applied."""
        payload = parse_payload(PatchData, "testPatch", data)
        simulate_patch(
            self._registry,
            payload.find,
            payload.replacement,
            self._evaluator,
            self._settings.plugin_name,
        )
        return Reply.success(nonce)

    def test_find(self, nonce: int | None, data: Any) -> Reply:
        """Check that a find strategy resolves to exactly one result."""
        payload = parse_payload(FindData, "testFind", data)
        try:
            args = materialize_all(payload.args, self._evaluator)
        except CompanionError as exc:
            return Reply.failure(nonce, f"Failed to parse args: {exc}")
        try:
            self._finder.validate(payload.type, args)
        except UnknownFindStrategy as exc:
            return Reply.failure(nonce, str(exc))
        except Exception as exc:
            return Reply.failure(nonce, f"Failed to find: {_describe(exc)}")
        return Reply.success(nonce)

    # Extract variants

    def _extract_by_id(self, nonce: int | None, payload: ExtractData) -> Reply:
        value = payload.id_or_search
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            if "id_or_search" in payload.model_fields_set:
                kind = wire_type_name(value)
            else:
                kind = "undefined"
            raise MalformedRequest(f"the provided moduleID is not a number. Got: {kind}")
        source = self._registry.lookup(int(value)) if float(value).is_integer() else None
        if not source:
            raise NoResults(f"Module({value}) not found")
        return Reply.success(nonce, type="extract", data=source, module_number=int(value))

    def _extract_by_search(self, nonce: int | None, payload: ExtractData) -> Reply:
        try:
            module_id = find_module_id(self._registry, [str(payload.id_or_search)])
        except ModuleIdResolutionError as exc:
            raise ModuleIdResolutionError(f"Error: {exc}") from exc
        return Reply.success(
            nonce,
            type="extract",
            data=self._registry.lookup(module_id),
            module_number=module_id,
        )

    def _extract_by_find(self, nonce: int | None, payload: ExtractData) -> Reply:
        try:
            args = materialize_all(payload.find_args, self._evaluator)
        except CompanionError as exc:
            return Reply.failure(nonce, f"Failed to parse args: {exc}")
        try:
            result = self._finder.find(payload.find_type, args)
        except UnknownFindStrategy as exc:
            return Reply.failure(nonce, str(exc))
        except Exception as exc:
            return Reply.failure(nonce, f"Failed to find: {_describe(exc)}")
        return Reply.success(
            nonce,
            type="extract",
            find=True,
            data=result.source,
            module_number=result.module_id,
        )
