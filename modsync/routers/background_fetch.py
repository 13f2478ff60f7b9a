"""Control surface for the background mod-fetching service.

Consumed by the dashboard: poll ``GET`` for status, ``POST`` to start/stop,
or subscribe to the events WebSocket for pushed status snapshots.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from modsync.dependencies import SyncEngine
from modsync.models.base import ErrorResponse, SuccessResponse
from modsync.models.sync import (
    BackgroundFetchAction,
    BackgroundFetchRequest,
    BackgroundFetchStatus,
    BackgroundFetchStatusResponse,
    EngineEvent,
)
from modsync.sync.controller import EngineStatus

router = APIRouter(prefix="/curseforge", tags=["background-fetch"])
logger = logging.getLogger("modsync.routers.background_fetch")

_ALLOWED_METHODS = "GET, POST"


@router.get("/background-fetch", response_model=BackgroundFetchStatusResponse)
async def get_background_fetch_status(engine: SyncEngine) -> BackgroundFetchStatusResponse:
    return BackgroundFetchStatusResponse(data=BackgroundFetchStatus.from_status(engine.status()))


@router.post(
    "/background-fetch",
    response_model=SuccessResponse,
    responses={400: {"model": ErrorResponse}},
)
async def control_background_fetch(request: Request, engine: SyncEngine) -> Any:
    """Start or stop the background sweep.

    The body is read by hand so that malformed JSON, non-object bodies and
    non-string actions all get the same 400 as an unknown action.
    """
    action = await _read_action(request)

    if action == BackgroundFetchAction.start.value:
        engine.start()
        return SuccessResponse(message="Background mod fetching service started")
    if action == BackgroundFetchAction.stop.value:
        engine.stop()
        return SuccessResponse(message="Background mod fetching service stopped")

    logger.info("Rejected background-fetch action %r", action)
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Invalid action. Use 'start' or 'stop'").model_dump(),
    )


async def _read_action(request: Request) -> Any:
    try:
        payload = await request.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return BackgroundFetchRequest.model_validate(payload).action


@router.api_route(
    "/background-fetch",
    methods=["PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def background_fetch_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed"},
        headers={"Allow": _ALLOWED_METHODS},
    )


@router.websocket("/background-fetch/events")
async def background_fetch_events(websocket: WebSocket, engine: SyncEngine) -> None:
    """Push an engine status snapshot on connect and whenever it changes.

    Client messages are ignored; the loop ends when the client disconnects.
    """
    await websocket.accept()
    queue = engine.subscribe()
    receiver = asyncio.ensure_future(websocket.receive())
    try:
        await _send_event(websocket, engine.status())
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                await _send_event(websocket, getter.result())
            else:
                getter.cancel()
            if receiver in done:
                if receiver.result().get("type") == "websocket.disconnect":
                    break
                receiver = asyncio.ensure_future(websocket.receive())
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        engine.unsubscribe(queue)
        logger.debug("Background-fetch events subscriber disconnected")


async def _send_event(websocket: WebSocket, status: EngineStatus) -> None:
    await websocket.send_json(EngineEvent.from_status(status).model_dump(mode="json", by_alias=True))
