"""Seismic Events API - FastAPI service over the pipeline.

Thin HTTP/WebSocket surface: every route delegates to the Orchestrator's
query surface. The orchestrator's scheduler and alert worker run in the
same process, started and stopped with the app.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any

from fastapi import FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.core.earthquake import event_to_dict
from src.core.errors import StoreUnavailable
from src.core.query import DEFAULT_LIMIT, MAX_LIMIT, EventFilter
from src.main import check_config, get_config
from src.orchestrator import Orchestrator
from src.shell.broadcast import UPDATES_TOPIC

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ===== Data Models =====

class EventQuery(BaseModel):
    """Query parameters for listing events."""
    min_magnitude: float | None = None
    max_magnitude: float | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    processed: bool | None = None
    notification_sent: bool | None = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)
    offset: int = Field(default=0, ge=0)

    def to_filter(self) -> EventFilter:
        return EventFilter(**self.model_dump())


def _processing_response(result: Any) -> dict[str, Any]:
    response = {
        "status": "success" if result.success else "partial_failure",
        "summary": result.summary,
        "feed_kind": result.feed_kind,
        "events_fetched": result.events_fetched,
        "alerts_queued": result.alerts_queued,
    }
    if result.ingest is not None:
        response["new"] = result.ingest.new
        response["updated"] = result.ingest.updated
        response["unchanged"] = result.ingest.unchanged
    if result.errors:
        response["errors"] = result.errors
    return response


def create_app(orchestrator: Orchestrator | None = None, schedule: bool = True) -> FastAPI:
    """Build the FastAPI app around an orchestrator.

    Args:
        orchestrator: Pipeline to serve (built from config if not provided)
        schedule: Start the recurring fetch jobs with the app
    """
    if orchestrator is None:
        config = get_config()
        if not check_config(config):
            raise RuntimeError("Invalid configuration")
        orchestrator = Orchestrator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.start(schedule=schedule)
        try:
            yield
        finally:
            await orchestrator.stop()

    app = FastAPI(
        title="Seismic Events API",
        description="Deduplicated USGS seismic events with real-time updates",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # ===== Query Endpoints =====

    @app.get("/api/earthquakes")
    async def list_earthquakes(query: Annotated[EventQuery, Query()]):
        """List events, newest first."""
        try:
            events = await orchestrator.find_all(query.to_filter())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StoreUnavailable:
            logger.exception("Event store query failed")
            raise HTTPException(status_code=503, detail="Event store unavailable")

        return {
            "earthquakes": [event_to_dict(e) for e in events],
            "count": len(events),
            "limit": query.limit,
            "offset": query.offset,
        }

    @app.get("/api/earthquakes/statistics")
    async def get_statistics():
        try:
            stats = await orchestrator.get_statistics()
        except StoreUnavailable:
            logger.exception("Failed to compute statistics")
            raise HTTPException(status_code=503, detail="Event store unavailable")
        return stats.to_dict()

    @app.get("/api/earthquakes/health")
    async def get_health():
        """Dependency health; 503 when any dependency is not ready."""
        report = await orchestrator.get_health_check()
        return JSONResponse(
            status_code=200 if report.healthy else 503,
            content=report.to_dict(),
        )

    @app.get("/api/earthquakes/{event_id}")
    async def get_earthquake(event_id: str):
        try:
            event = await orchestrator.get_event(event_id)
        except StoreUnavailable:
            logger.exception("Failed to read event %s", event_id)
            raise HTTPException(status_code=503, detail="Event store unavailable")

        if event is None:
            raise HTTPException(status_code=404, detail=f"Event '{event_id}' not found")

        return event_to_dict(event)

    @app.post("/api/earthquakes/fetch/{feed_kind}")
    async def trigger_fetch(feed_kind: str):
        """Run a fetch cycle for a feed now."""
        try:
            result = await orchestrator.trigger_manual_fetch(feed_kind)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        status_code = 200 if result.success else 207  # 207 = Multi-Status
        return JSONResponse(status_code=status_code, content=_processing_response(result))

    @app.get("/health")
    async def health_check():
        """Liveness check for the container platform."""
        return {"status": "healthy"}

    # ===== Real-time Updates =====

    async def forward_updates(subscription: Any, websocket: WebSocket) -> None:
        async for message in subscription:
            await websocket.send_json(message.to_dict())

    @app.websocket("/ws")
    async def updates(websocket: WebSocket):
        """Push broadcast messages until the client disconnects.

        The client's own frames are only read to notice the disconnect, so
        the subscription is closed as soon as the client goes away.
        """
        async with orchestrator.broadcast.subscribe(UPDATES_TOPIC) as subscription:
            await websocket.accept()
            sender = asyncio.create_task(forward_updates(subscription, websocket))
            try:
                while not sender.done():
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
            finally:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)

        logger.info("WebSocket subscriber disconnected")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
