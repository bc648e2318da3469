"""FastAPI entry point for the media scheduler."""
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .scheduler import (
    ActionCreate,
    ActionExecutor,
    ActionPatch,
    ActionStore,
    ActionValidationError,
    CalendarEvent,
    MediaController,
    SchedulerEvent,
    SchedulerService,
)
from .scheduler.schedule import localize, parse_date, to_epoch
from .services.calendar_service import CalendarEventStore
from .services.media_service import VlcController


# ============== WebSocket Broadcast ==============

class ConnectionManager:
    """WebSocket connection manager."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        """Accept a connection."""
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.debug(f"WebSocket connected: {client_id}")

    def disconnect(self, client_id: str):
        """Drop a connection."""
        if client_id in self.active_connections:
            del self.active_connections[client_id]
            logger.debug(f"WebSocket disconnected: {client_id}")

    async def broadcast(self, event: SchedulerEvent):
        """Send a scheduler event to every client."""
        payload = event.to_dict()
        for client_id, ws in list(self.active_connections.items()):
            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.warning(f"Broadcast to {client_id} failed: {e}")
                self.disconnect(client_id)

    def count(self) -> int:
        return len(self.active_connections)


# ============== Pydantic Models ==============

class ActionRequest(BaseModel):
    """Create or replace an action."""
    actionType: str
    time: str
    isDaily: bool = False
    date: Optional[Union[str, float]] = None
    eventId: Optional[str] = None
    eventName: Optional[str] = None
    isActive: bool = True
    timezone: Optional[str] = None
    maxRetries: Optional[int] = None


class ActionPatchRequest(BaseModel):
    """Partial update of an action."""
    actionType: Optional[str] = None
    time: Optional[str] = None
    isDaily: Optional[bool] = None
    date: Optional[Union[str, float]] = None
    eventId: Optional[str] = None
    eventName: Optional[str] = None
    isActive: Optional[bool] = None
    timezone: Optional[str] = None
    maxRetries: Optional[int] = None
    retryCount: Optional[int] = None


# ============== Scheduler API ==============

router = APIRouter(prefix="/api/scheduler")


def _scheduler(request: Request) -> SchedulerService:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None or not scheduler.state.running:
        raise HTTPException(status_code=503, detail="Service not ready")
    return scheduler


@router.get("/actions")
async def list_actions(request: Request):
    """List scheduled actions."""
    actions = await _scheduler(request).list()
    return {
        "actions": [a.to_dict() for a in actions],
        "total": len(actions),
    }


@router.get("/actions/{action_id}")
async def get_action(action_id: str, request: Request):
    """Get one action."""
    action = await _scheduler(request).get(action_id)
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    return {"action": action.to_dict(), "schedule": action.describe()}


@router.post("/actions", status_code=201)
async def create_action(body: ActionRequest, request: Request):
    """Create an action."""
    scheduler = _scheduler(request)
    try:
        action = await scheduler.create(ActionCreate.from_dict(body.model_dump()))
    except ActionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"action": action.to_dict()}


@router.put("/actions/{action_id}")
async def replace_action(action_id: str, body: ActionRequest, request: Request):
    """Replace every editable field of an action."""
    scheduler = _scheduler(request)
    try:
        action = await scheduler.update(action_id, ActionCreate.from_dict(body.model_dump()))
    except ActionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    return {"action": action.to_dict()}


@router.patch("/actions/{action_id}")
async def patch_action(action_id: str, body: ActionPatchRequest, request: Request):
    """Change only the supplied fields of an action."""
    scheduler = _scheduler(request)
    try:
        patch = ActionPatch.from_dict(body.model_dump(exclude_unset=True))
        action = await scheduler.patch(action_id, patch)
    except ActionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    return {"action": action.to_dict()}


@router.delete("/actions/{action_id}")
async def delete_action(action_id: str, request: Request):
    """Delete an action."""
    result = await _scheduler(request).remove(action_id)
    if not result.removed:
        raise HTTPException(status_code=404, detail=result.reason or "Action not found")
    return {"status": "deleted", "actionId": action_id}


@router.post("/actions/{action_id}/pause")
async def pause_action(action_id: str, request: Request):
    """Pause an action."""
    action = await _scheduler(request).pause(action_id)
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    return {"action": action.to_dict()}


@router.post("/actions/{action_id}/resume")
async def resume_action(action_id: str, request: Request):
    """Resume a paused action."""
    action = await _scheduler(request).resume(action_id)
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    return {"action": action.to_dict()}


@router.post("/actions/{action_id}/execute")
async def execute_action(action_id: str, request: Request):
    """Execute an action now."""
    result = await _scheduler(request).run(action_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Action not found")
    return result.to_dict()


@router.post("/reinitialize")
async def reinitialize(request: Request):
    """Rebuild every live timer from the store."""
    scheduler = _scheduler(request)
    ok = await scheduler.reinitialize()
    if not ok:
        raise HTTPException(status_code=500, detail=scheduler.state.last_error or "Reinitialize failed")
    health = await scheduler.health()
    return {"status": "reinitialized", "health": health.to_dict()}


@router.get("/health")
async def scheduler_health(request: Request):
    """Scheduler health."""
    health = await _scheduler(request).health()
    return health.to_dict()


@router.get("/debug")
async def scheduler_debug(request: Request):
    """Dump live schedule entries."""
    snapshot = await _scheduler(request).debug()
    return snapshot.to_dict()


# ============== Calendar Events API ==============

calendar_router = APIRouter(prefix="/api/calendar-events")


class CalendarEventRequest(BaseModel):
    """One calendar event; ``start``/``end`` are ISO dates or epoch seconds."""
    summary: str
    start: Union[str, float]
    end: Union[str, float]
    description: str = ""
    location: str = ""
    uid: str = ""


def _calendar(request: Request) -> CalendarEventStore:
    calendar = getattr(request.app.state, "calendar", None)
    if calendar is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return calendar


def _to_event(body: CalendarEventRequest, tz_name: str) -> CalendarEvent:
    try:
        start = to_epoch(localize(parse_date(body.start), tz_name))
        end = to_epoch(localize(parse_date(body.end), tz_name))
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    if end < start:
        raise HTTPException(status_code=400, detail="Event end is before its start")
    return CalendarEvent(
        summary=body.summary,
        start=start,
        end=end,
        description=body.description,
        location=body.location,
        uid=body.uid,
    )


@calendar_router.get("")
async def list_calendar_events(request: Request):
    """List calendar events, earliest first."""
    events = await _calendar(request).list()
    return {"events": [e.to_dict() for e in events], "total": len(events)}


@calendar_router.get("/{event_id}")
async def get_calendar_event(event_id: int, request: Request):
    event = await _calendar(request).get(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Calendar event not found")
    return {"event": event.to_dict()}


@calendar_router.post("", status_code=201)
async def create_calendar_events(body: List[CalendarEventRequest], request: Request):
    """Import a batch of calendar events."""
    if not body:
        raise HTTPException(status_code=400, detail="Calendar event data is required")
    calendar = _calendar(request)
    tz_name = request.app.state.settings.default_timezone
    drafts = [_to_event(item, tz_name) for item in body]
    events = [await calendar.add(event) for event in drafts]
    logger.info(f"Imported {len(events)} calendar events")
    return {"events": [e.to_dict() for e in events]}


@calendar_router.put("/{event_id}")
async def replace_calendar_event(event_id: int, body: CalendarEventRequest, request: Request):
    calendar = _calendar(request)
    event = _to_event(body, request.app.state.settings.default_timezone)
    updated = await calendar.update(event_id, event)
    if not updated:
        raise HTTPException(status_code=404, detail="Calendar event not found")
    return {"event": updated.to_dict()}


@calendar_router.delete("/{event_id}")
async def delete_calendar_event(event_id: int, request: Request):
    if not await _calendar(request).delete(event_id):
        raise HTTPException(status_code=404, detail="Calendar event not found")
    return {"status": "deleted", "eventId": event_id}


# ============== App Factory ==============

def create_app(
    settings: Settings | None = None,
    media_controller: MediaController | None = None,
) -> FastAPI:
    """Build the FastAPI app with its scheduler lifecycle.

    Args:
        settings: Service settings; the environment-loaded settings by default
        media_controller: Media player boundary; a VLC controller by default
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001
        logger.info("=" * 50)
        logger.info("  Media Scheduler")
        logger.info(f"  Database: {settings.db_path}")
        logger.info(f"  Playlists: {settings.playlist_dir}")
        logger.info(f"  Timezone: {settings.default_timezone}")
        logger.info("=" * 50)

        calendar = CalendarEventStore(settings.db_path)
        await calendar.initialize()

        media = media_controller or VlcController(
            playlist_dir=settings.playlist_dir,
            host=settings.vlc_http_host,
            port=settings.vlc_http_port,
            password=settings.vlc_http_password,
            vlc_path=settings.vlc_path,
            autostart=settings.vlc_autostart,
        )
        executor = ActionExecutor(
            media=media,
            calendar=calendar,
            timeout=settings.execution_timeout,
        )
        store = ActionStore(
            settings.db_path,
            default_timezone=settings.default_timezone,
            default_max_retries=settings.default_max_retries,
        )
        scheduler = SchedulerService(executor=executor, store=store)

        ws_manager = ConnectionManager()
        scheduler.on_event(ws_manager.broadcast)

        app.state.scheduler = scheduler
        app.state.calendar = calendar
        app.state.ws_manager = ws_manager

        await scheduler.start()
        logger.info(f"API docs: http://{settings.host}:{settings.port}/docs")
        logger.info(f"WebSocket: ws://{settings.host}:{settings.port}/ws")

        yield

        logger.info("Shutting down...")
        await scheduler.stop()
        await calendar.close()
        if media_controller is None:
            await media.close()
        logger.info("Goodbye!")

    app = FastAPI(
        title="Media Scheduler",
        description="Time-triggered media-control actions",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.get("/")
    async def root():
        return {
            "name": "Media Scheduler",
            "version": "0.1.0",
            "status": "running",
        }

    @app.get("/health")
    async def health(request: Request):
        """Health check."""
        scheduler: Optional[SchedulerService] = getattr(request.app.state, "scheduler", None)
        scheduler_status: Dict[str, Any] = {}
        if scheduler:
            scheduler_status = (await scheduler.health()).to_dict()
        return {
            "status": "ok" if scheduler_status.get("running") else "starting",
            "version": "0.1.0",
            "scheduler": scheduler_status,
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Broadcast channel: every executed/error event is pushed to clients."""
        ws_manager: ConnectionManager = websocket.app.state.ws_manager
        client_id = websocket.query_params.get("client_id") or uuid4().hex[:8]
        await ws_manager.connect(websocket, client_id)
        try:
            while True:
                data = await websocket.receive_json()
                if data.get("method") == "ping":
                    await websocket.send_json({"type": "pong", "connections": ws_manager.count()})
        except WebSocketDisconnect:
            pass
        finally:
            ws_manager.disconnect(client_id)

    app.include_router(router)
    app.include_router(calendar_router)
    return app


app = create_app()


# ============== Entry Point ==============

def main():
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(
        "media_scheduler.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
