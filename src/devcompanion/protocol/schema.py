"""Wire models for the companion protocol.

Frames are JSON objects. Requests carry ``type``, ``data`` and ``nonce``;
replies echo the nonce and carry ``ok`` plus either ``error`` or extra
fields. Field names on the wire are camelCase (``extractType``,
``moduleNumber``); the models expose snake_case attributes and dump with
``by_alias=True``.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devcompanion.errors import DecodeError, MalformedRequest, UnknownNodeType

M = TypeVar("M", bound=BaseModel)

__all__ = [
    "StringNode",
    "RegexValue",
    "RegexNode",
    "FunctionNode",
    "ExpressionNode",
    "parse_node",
    "ReplacementRule",
    "PatchData",
    "FindData",
    "ExtractData",
    "Request",
    "Reply",
    "decode_request",
    "encode_reply",
    "decode_reply",
    "parse_payload",
]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StringNode(_WireModel):
    """A literal string."""

    type: Literal["string"] = "string"
    value: str


class RegexValue(_WireModel):
    pattern: str
    flags: str = ""


class RegexNode(_WireModel):
    """A regular expression, compiled by the interpreter."""

    type: Literal["regex"] = "regex"
    value: RegexValue


class FunctionNode(_WireModel):
    """Python source the peer wants evaluated into a value (usually a callable)."""

    type: Literal["function"] = "function"
    value: str


ExpressionNode = StringNode | RegexNode | FunctionNode

_NODE_TYPES: dict[str, type[_WireModel]] = {
    "string": StringNode,
    "regex": RegexNode,
    "function": FunctionNode,
}


def parse_node(raw: Any) -> ExpressionNode:
    """Decode one expression node from its wire form.

    Args:
        raw: The decoded JSON value, or an already-built node.

    Returns:
        The typed node.

    Raises:
        UnknownNodeType: If the ``type`` tag is not one of string/regex/function.
        MalformedRequest: If the tag is known but the body does not validate.
    """
    if isinstance(raw, (StringNode, RegexNode, FunctionNode)):
        return raw
    if not isinstance(raw, Mapping):
        raise UnknownNodeType(type(raw).__name__)
    node_type = raw.get("type")
    model = _NODE_TYPES.get(node_type) if isinstance(node_type, str) else None
    if model is None:
        raise UnknownNodeType(node_type)
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as exc:
        raise MalformedRequest(f"Invalid {node_type} node: {_first_error(exc)}") from exc


class ReplacementRule(_WireModel):
    """One match/replace pair. Nodes stay raw until the rule is applied."""

    match: Any
    replace: Any


class PatchData(_WireModel):
    """Payload of a ``testPatch`` request."""

    find: str
    replacement: list[ReplacementRule] = Field(default_factory=list)


class FindData(_WireModel):
    """Payload of a ``testFind`` request."""

    type: str
    args: list[Any] = Field(default_factory=list)


class ExtractData(_WireModel):
    """Payload of an ``extract`` request."""

    extract_type: Any = Field(default=None, alias="extractType")
    id_or_search: Any = Field(default=None, alias="idOrSearch")
    find_type: str | None = Field(default=None, alias="findType")
    find_args: list[Any] = Field(default_factory=list, alias="findArgs")


class Request(_WireModel):
    """Envelope of a peer request. ``type`` and ``nonce`` may be missing."""

    type: Any = None
    data: Any = None
    nonce: int | None = None


class Reply(_WireModel):
    """Envelope sent back to the peer.

    ``nonce`` is omitted for unsolicited pushes such as the module list.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    nonce: int | None = None
    ok: bool
    type: str | None = None
    data: Any = None
    error: str | None = None
    module_number: int | None = Field(default=None, alias="moduleNumber")
    find: bool | None = None

    @classmethod
    def failure(cls, nonce: int | None, error: str) -> Reply:
        return cls(nonce=nonce, ok=False, error=error)

    @classmethod
    def success(cls, nonce: int | None, **extra: Any) -> Reply:
        return cls(nonce=nonce, ok=True, **extra)


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def decode_request(frame: str | bytes) -> Request:
    """Decode a text frame into a request envelope.

    Raises:
        DecodeError: If the frame is not JSON, not an object, or the
            envelope fields have the wrong types.
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Frame is not UTF-8: {exc}") from exc
    try:
        message = json.loads(frame)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise DecodeError(f"Expected a JSON object, got {type(message).__name__}")
    try:
        return Request.model_validate(message)
    except ValidationError as exc:
        raise DecodeError(f"Invalid envelope: {_first_error(exc)}") from exc


def parse_payload(model: type[M], command: str, data: Any) -> M:
    """Validate a request's ``data`` against the command's payload model.

    Raises:
        MalformedRequest: If ``data`` does not fit the model.
    """
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as exc:
        raise MalformedRequest(
            f"Malformed {command} request: {_first_error(exc)}"
        ) from exc


def encode_reply(reply: Reply) -> str:
    """Serialize a reply, dropping unset fields."""
    return reply.model_dump_json(by_alias=True, exclude_none=True)


def decode_reply(frame: str | bytes) -> Reply:
    """Parse a reply frame, as the peer would.

    Raises:
        DecodeError: If the frame is not a valid reply.
    """
    try:
        return Reply.model_validate_json(frame)
    except ValidationError as exc:
        raise DecodeError(f"Invalid reply: {_first_error(exc)}") from exc
