"""FastAPI entry-point for the qrlink scanner."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .logging_config import configure_logging
from .session_manager import ScanSession

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = FastAPI(title="qrlink", version="0.1.0")
session = ScanSession(settings=settings)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
    return PlainTextResponse(
        f"Internal server error: {exc}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Validation error in %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    try:
        await session.start()
        logger.info("Application started (phase=%s)", session.phase.value)
    except Exception as e:
        logger.exception("Failed to start scan session: %s", e)
        # Keep serving so the lifecycle endpoints can retry.


@app.on_event("shutdown")
async def on_shutdown() -> None:
    try:
        await session.stop()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.exception("Error during shutdown: %s", e)


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse(session.health())


@app.post("/session/start")
async def session_start() -> JSONResponse:
    """Lifecycle hook: permissions granted, scanning may start."""
    started = await session.on_session_start()
    return JSONResponse(
        {"status": "scanning" if started else "denied", "phase": session.phase.value},
        status_code=200 if started else 403,
    )


@app.post("/session/stop")
async def session_stop() -> JSONResponse:
    """Lifecycle hook: scanning must stop."""
    await session.on_session_stop()
    return JSONResponse({"status": "stopped", "phase": session.phase.value})


class PayloadRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Raw decoded string, e.g. WIFI:T:WPA;S:Net;P:pw;;")


@app.post("/debug/payload")
async def debug_payload(payload: PayloadRequest) -> JSONResponse:
    """Dispatch a raw payload as if the camera had decoded it."""
    actions = await session.inject_payload(payload.text)
    return JSONResponse({"status": "ok", "actions": actions})


@app.get("/preview")
async def preview_stream() -> StreamingResponse:
    """MJPEG preview of the scanning camera."""
    boundary = "frame"

    async def frame_iterator() -> AsyncIterator[bytes]:
        try:
            async for frame in session.preview_frames():
                header = (
                    f"--{boundary}\r\n"
                    f"Content-Type: image/jpeg\r\n"
                    f"Content-Length: {len(frame)}\r\n\r\n"
                ).encode("ascii")
                yield header + frame + b"\r\n"
        except Exception as e:
            logger.error("Preview stream error: %s", e)

    media_type = f"multipart/x-mixed-replace; boundary={boundary}"
    return StreamingResponse(frame_iterator(), media_type=media_type)


@app.websocket("/ws/ui")
async def ui_socket(ws: WebSocket) -> None:
    await ws.accept()
    queue = session.register_ui()
    try:
        await ws.send_json({"type": "state", "phase": session.phase.value, "data": session.health()})
        while True:
            try:
                event = await queue.get()
            except asyncio.CancelledError:
                break

            payload = {
                "type": event.type,
                "phase": event.phase.value,
                "data": event.data,
            }
            if event.error:
                payload["error"] = event.error

            try:
                await ws.send_json(payload)
            except Exception as e:
                logger.debug("WebSocket send failed (client disconnected): %s", e)
                break
    except WebSocketDisconnect:
        pass
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("Unexpected error in UI websocket: %s", e)
    finally:
        session.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass
