"""HTTP views over realtime state and server-side event publishing."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from thesync.realtime import RealtimeCoordinator, get_coordinator
from thesync.realtime.events import ServerEvent

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.get("/presence")
def list_online_users(
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    users = []
    for connection in coordinator.registry.online_users():
        users.append({**connection.to_public(), "connectionId": connection.connection_id})
    return {"online": users, "total": len(users)}


@router.get("/presence/{user_id}")
def read_user_presence(
    user_id: str,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    presence = coordinator.registry.presence(user_id)
    if presence is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown user")
    return presence.to_public()


@router.get("/groups/{group_id}")
def read_group_room(
    group_id: str,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    return {"groupId": group_id, "members": sorted(coordinator.groups.members_of(group_id))}


@router.get("/calls")
def list_call_rooms(
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    calls = [room.to_public() for room in coordinator.calls.calls()]
    return {"calls": calls, "total": len(calls)}


@router.get("/calls/{call_id}")
def read_call_room(
    call_id: str,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    room = coordinator.calls.get(call_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return room.to_public()


@router.post("/groups/{group_id}/events", status_code=status.HTTP_202_ACCEPTED)
async def publish_group_event(
    group_id: str,
    event: ServerEvent,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Fan an event out to every live member of a group room."""

    delivered = await coordinator.publish_to_group(group_id, event.event, event.payload)
    return {"delivered": delivered}


@router.post("/users/{user_id}/events", status_code=status.HTTP_202_ACCEPTED)
async def publish_user_event(
    user_id: str,
    event: ServerEvent,
    coordinator: RealtimeCoordinator = Depends(get_coordinator),
) -> dict[str, Any]:
    """Deliver an event to a single user if they are online."""

    delivered = await coordinator.publish_to_user(user_id, event.event, event.payload)
    return {"delivered": delivered}
