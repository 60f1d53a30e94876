"""Client capability negotiation.

Capabilities are read once from the ``initialize`` frame and frozen into a
``CapabilitySet``. There is no renegotiation path: a client that did not
declare a capability at initialization cannot acquire it later in the same
session.
"""

import copy
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from mcp.types import InitializeRequestParams
from pydantic import ValidationError

from sfmcp.framework.errors import BadInitializationError

logger = logging.getLogger(__name__)

INITIALIZE_METHOD = "initialize"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list | tuple):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


class CapabilitySet(Mapping[str, Mapping[str, Any]]):
    """Immutable mapping of capability name to its declared sub-options.

    Example:
        caps = CapabilitySet.from_declaration({"logging": {}, "roots": {"listChanged": True}})
        caps.supports("logging")  # True
        caps.options("roots")["listChanged"]  # True
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, Any] | None = None) -> None:
        frozen = {}
        for name, options in (entries or {}).items():
            # A capability declared as anything but an object carries no sub-options
            frozen[name] = _freeze(options if isinstance(options, Mapping) else {})
        self._entries = MappingProxyType(frozen)

    @classmethod
    def from_declaration(cls, declaration: Mapping[str, Any] | None) -> "CapabilitySet":
        """Build a capability set from the raw ``capabilities`` object of a client."""
        return cls(copy.deepcopy(dict(declaration or {})))

    def supports(self, name: str) -> bool:
        """Whether the client declared ``name``."""
        return name in self._entries

    def options(self, name: str) -> Mapping[str, Any]:
        """Declared sub-options for ``name`` (empty when not declared)."""
        return self._entries.get(name, MappingProxyType({}))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._entries)

    def to_dict(self) -> dict[str, Any]:
        """Plain, mutable copy for serialization."""
        return _thaw(self._entries)

    def __getitem__(self, name: str) -> Mapping[str, Any]:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"CapabilitySet({sorted(self._entries)})"


@dataclass(frozen=True)
class InitializeParams:
    """Validated content of an ``initialize`` request.

    ``request_id`` is None when the parameters were read back from an SDK
    session instead of a raw frame.
    """

    request_id: str | int | None
    protocol_version: str
    client_name: str
    client_version: str
    capabilities: CapabilitySet


def is_initialize_request(frame: Any) -> bool:
    """Cheap shape check: a JSON-RPC request whose method is ``initialize``."""
    return (
        isinstance(frame, dict)
        and frame.get("method") == INITIALIZE_METHOD
        and frame.get("id") is not None
    )


class CapabilityNegotiator:
    """Records, per session, which optional features the client declared."""

    def __init__(self) -> None:
        self._by_session: dict[str, CapabilitySet] = {}

    @staticmethod
    def parse_initialize(frame: Any) -> InitializeParams:
        """Validate an ``initialize`` frame.

        Args:
            frame: Decoded JSON-RPC message

        Returns:
            InitializeParams with the frozen capability declaration

        Raises:
            BadInitializationError: If the frame is not a valid initialize request
        """
        if not isinstance(frame, dict):
            msg = "initialization frame must be a JSON object"
            raise BadInitializationError(msg)

        if frame.get("jsonrpc") != "2.0":
            msg = "jsonrpc must be '2.0'"
            raise BadInitializationError(msg)

        if frame.get("method") != INITIALIZE_METHOD:
            msg = f"expected method '{INITIALIZE_METHOD}', got {frame.get('method')!r}"
            raise BadInitializationError(msg)

        request_id = frame.get("id")
        if request_id is None or isinstance(request_id, bool):
            msg = "initialize must be a request with an id"
            raise BadInitializationError(msg)

        raw_params = frame.get("params")
        try:
            params = InitializeRequestParams.model_validate(raw_params)
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            msg = "initialize params failed validation"
            raise BadInitializationError(msg, errors) from e

        # Read the raw declaration so client-specific keys (e.g. logging) survive
        declared = raw_params.get("capabilities") or {}

        return InitializeParams(
            request_id=request_id,
            protocol_version=str(params.protocolVersion),
            client_name=params.clientInfo.name,
            client_version=params.clientInfo.version,
            capabilities=CapabilitySet.from_declaration(declared),
        )

    @staticmethod
    def from_client_params(params: InitializeRequestParams) -> InitializeParams:
        """Read the declaration back from the parameters an SDK session received."""
        # Extra keys (e.g. logging) are kept by the model and survive the dump
        declared = params.capabilities.model_dump(mode="json", exclude_none=True)
        return InitializeParams(
            request_id=None,
            protocol_version=str(params.protocolVersion),
            client_name=params.clientInfo.name,
            client_version=params.clientInfo.version,
            capabilities=CapabilitySet.from_declaration(declared),
        )

    def negotiate(self, session_id: str, params: InitializeParams) -> CapabilitySet:
        """Freeze the declared capabilities for ``session_id``.

        Raises:
            BadInitializationError: If the session already negotiated
        """
        if session_id in self._by_session:
            msg = "capabilities were already negotiated for this session"
            raise BadInitializationError(msg)

        self._by_session[session_id] = params.capabilities
        logger.debug(
            "Session %s negotiated capabilities: %s",
            session_id,
            sorted(params.capabilities.names),
        )
        return params.capabilities

    def supports(self, session_id: str | None, capability: str) -> bool:
        """Whether the session's client declared ``capability`` (False if unknown)."""
        caps = self._by_session.get(session_id) if session_id else None
        return caps is not None and caps.supports(capability)

    def capabilities_for(self, session_id: str) -> CapabilitySet | None:
        return self._by_session.get(session_id)

    def forget(self, session_id: str) -> None:
        self._by_session.pop(session_id, None)


__all__ = [
    "INITIALIZE_METHOD",
    "CapabilityNegotiator",
    "CapabilitySet",
    "InitializeParams",
    "is_initialize_request",
]
