"""
Ride change WebSocket.

Pushes "ride changed" notices to the app so screens re-fetch instead of
polling. Messages carry identifiers only; the REST endpoints stay the
source of truth.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState
from campus_shuttle.app.core.jwt import decode_access_token
from campus_shuttle.app.core.token_revocation import is_token_revoked
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.services.change_feed import (
    ChangeType, RideChangeEvent, RideFilter, Subscription, get_change_feed
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rides", tags=["Ride Feed"])


def filter_for(payload: dict, ride_id: Optional[int]) -> RideFilter:
    """
    Passengers only hear about their own rides. Drivers hear about every
    ride so new requests show up on their pending list.
    """
    if payload.get("role") == UserRole.PASSENGER.value:
        return RideFilter(ride_id=ride_id, passenger_id=payload.get("user_id"))
    return RideFilter(ride_id=ride_id)


def to_message(event: RideChangeEvent) -> dict:
    if event.event == ChangeType.RESYNC:
        return {"type": "resync"}
    return {
        "type": "ride_changed",
        "event": event.event,
        "ride_id": event.ride_id,
        "passenger_id": event.passenger_id,
        "driver_id": event.driver_id,
    }


async def forward(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        if websocket.application_state != WebSocketState.CONNECTED:
            break
        await websocket.send_json(to_message(event))


@router.websocket("/feed")
async def ride_feed(websocket: WebSocket):
    token = websocket.query_params.get("token")
    payload = decode_access_token(token) if token else None
    if payload is None or not payload.get("user_id") or await is_token_revoked(token):
        await websocket.close(code=1008)
        return

    ride_id = websocket.query_params.get("ride_id")
    try:
        ride_filter = filter_for(payload, int(ride_id) if ride_id else None)
    except ValueError:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    subscription = get_change_feed().subscribe(ride_filter)
    # Anything that changed before the socket opened is unknown to the client
    await websocket.send_json({"type": "resync"})

    sender = asyncio.create_task(forward(websocket, subscription))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Ride feed client %s disconnected", payload.get("user_id"))
    finally:
        subscription.unsubscribe()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # The socket usually closed while an event was being sent
            logger.info("Ride feed sender for %s stopped: %s", payload.get("user_id"), e)
