"""Inbound realtime event payloads."""

from __future__ import annotations

from typing import Any, Dict, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, constr
from pydantic.alias_generators import to_camel

Identifier = constr(strip_whitespace=True, min_length=1, max_length=128)


class RealtimeError(RuntimeError):
    """Base class for errors raised by the realtime coordinator."""


class InvalidEventError(RealtimeError):
    """Raised when an inbound frame cannot be turned into a known event."""

    def __init__(self, event: str | None, detail: str) -> None:
        super().__init__(detail)
        self.event = event
        self.detail = detail


class EventPayload(BaseModel):
    """Common configuration: camelCase on the wire, numeric ids accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class EmptyPayload(EventPayload):
    pass


class IdentifyPayload(EventPayload):
    user_id: Identifier
    username: constr(strip_whitespace=True, min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=256)
    avatar: str | None = Field(default=None, max_length=2048)


class GroupRoomPayload(EventPayload):
    group_id: Identifier


class GroupMessagePayload(EventPayload):
    group_id: Identifier
    message_body: Any = Field(...)


class DirectMessagePayload(EventPayload):
    receiver_id: Identifier
    message_body: Any = Field(...)


class TypingPayload(EventPayload):
    group_id: Identifier
    username: str | None = None


class StartCallPayload(EventPayload):
    group_id: Identifier
    call_id: Identifier


class JoinCallPayload(EventPayload):
    call_id: Identifier
    group_id: Identifier | None = None


class RelayPayload(EventPayload):
    call_id: Identifier | None = None
    target_connection_id: Identifier
    payload: Any = None
    signal_type: str | None = None


class LeaveCallPayload(EventPayload):
    call_id: Identifier


class EndCallPayload(EventPayload):
    call_id: Identifier
    group_id: Identifier | None = None


class ServerEvent(BaseModel):
    """Event published into the realtime layer by an HTTP collaborator."""

    event: constr(strip_whitespace=True, min_length=1, max_length=64)
    payload: Dict[str, Any] = Field(default_factory=dict)


INBOUND_EVENTS: Dict[str, Type[EventPayload]] = {
    "connect-identify": IdentifyPayload,
    "join-group-room": GroupRoomPayload,
    "leave-group-room": GroupRoomPayload,
    "send-group-message": GroupMessagePayload,
    "send-direct-message": DirectMessagePayload,
    "typing-start": TypingPayload,
    "typing-stop": TypingPayload,
    "start-call": StartCallPayload,
    "join-call": JoinCallPayload,
    "relay-signal": RelayPayload,
    "relay-offer": RelayPayload,
    "relay-answer": RelayPayload,
    "relay-ice": RelayPayload,
    "leave-call": LeaveCallPayload,
    "end-call": EndCallPayload,
    "ping": EmptyPayload,
    "logout": EmptyPayload,
}


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_event(frame: Any) -> tuple[str, EventPayload]:
    """Validate a decoded frame and return ``(event name, payload model)``."""

    if not isinstance(frame, dict):
        raise InvalidEventError(None, "Message payload must be a JSON object")
    event = frame.get("type")
    if not isinstance(event, str) or not event:
        raise InvalidEventError(None, "Message type must be provided")
    model = INBOUND_EVENTS.get(event)
    if model is None:
        raise InvalidEventError(event, f"Unsupported event type '{event}'")
    body = {key: value for key, value in frame.items() if key != "type"}
    try:
        return event, model.model_validate(body)
    except ValidationError as exc:
        raise InvalidEventError(event, _describe(exc)) from exc


__all__ = [
    "INBOUND_EVENTS",
    "DirectMessagePayload",
    "EmptyPayload",
    "EndCallPayload",
    "EventPayload",
    "GroupMessagePayload",
    "GroupRoomPayload",
    "IdentifyPayload",
    "InvalidEventError",
    "JoinCallPayload",
    "LeaveCallPayload",
    "RealtimeError",
    "RelayPayload",
    "ServerEvent",
    "StartCallPayload",
    "TypingPayload",
    "parse_event",
]
