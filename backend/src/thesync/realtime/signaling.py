"""Helpers for the WebRTC signalling relay.

Call negotiation payloads (SDP offers/answers, ICE candidates, generic
signals) are opaque to the server. The relay only decides which outbound
event a request maps to and stamps the sender's connection id so the target
knows where to send its reply.
"""

from __future__ import annotations

from typing import Any, Dict

RELAY_EVENTS: Dict[str, str] = {
    "relay-signal": "signal",
    "relay-offer": "offer",
    "relay-answer": "answer",
    "relay-ice": "ice-candidate",
}


def outbound_signal_event(inbound: str) -> str:
    """Return the event name delivered to the relay target."""

    try:
        return RELAY_EVENTS[inbound]
    except KeyError:
        raise ValueError(f"Unsupported relay event '{inbound}'") from None


def build_relay_envelope(
    *,
    call_id: str | None,
    from_connection_id: str,
    payload: Any,
    signal_type: str | None = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "callId": call_id,
        "fromConnectionId": from_connection_id,
        "payload": payload,
    }
    if signal_type is not None:
        body["signalType"] = signal_type
    return body


__all__ = ["RELAY_EVENTS", "build_relay_envelope", "outbound_signal_event"]
