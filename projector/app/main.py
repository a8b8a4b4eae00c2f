"""FastAPI entry-point for the edge projector."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import psutil
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .config import Settings, get_settings
from .engine import ProjectorEngine
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

settings: Settings = get_settings()
configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)
app = FastAPI(title="edge-projector", version="0.1.0")
engine = ProjectorEngine(settings=settings)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
    """Catch-all exception handler to prevent application crashes."""
    logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
    return PlainTextResponse(
        f"Internal server error: {str(exc)}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors gracefully."""
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
    psutil.cpu_percent(interval=None)
    try:
        await engine.start()
        logger.info("Application started successfully")
    except Exception as e:
        logger.exception("Failed to start projector engine: %s", e)
        logger.error("Application startup failed - running in degraded mode")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    try:
        await engine.stop()
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.exception("Error during shutdown: %s", e)


@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok", "running": engine.running})


@app.get("/status")
async def engine_status() -> JSONResponse:
    return JSONResponse(engine.status())


@app.get("/objects")
async def tracked_objects() -> JSONResponse:
    """Currently tracked objects (smoothed, normalized + mirrored screen position)."""
    return JSONResponse({"objects": engine.objects()})


@app.get("/config")
async def field_config() -> JSONResponse:
    return JSONResponse({
        "tracking": engine.settings.tracking.model_dump(),
        "field": engine.settings.field.model_dump(),
        "render": engine.settings.render.model_dump(),
        "detector": {
            "backend": engine.settings.detector.backend,
            "detection_interval_ms": engine.settings.detector.effective_detection_interval_ms,
        },
    })


@app.get("/debug/performance")
async def debug_performance() -> JSONResponse:
    """Get real-time CPU and memory usage."""
    try:
        # Non-blocking: usage since the previous call, primed at startup
        cpu_percent = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()

        return JSONResponse({
            "cpu_percent": round(cpu_percent, 1),
            "memory_percent": round(memory.percent, 1),
            "memory_used_mb": round(memory.used / (1024 * 1024), 1),
            "memory_total_mb": round(memory.total / (1024 * 1024), 1),
            "render_fps": engine.status()["render_fps"],
        })
    except Exception as e:
        logger.error("Performance monitoring error: %s", e)
        return JSONResponse(
            {"error": str(e)},
            status_code=500,
        )


@app.get("/preview")
async def preview_stream() -> StreamingResponse:
    """Stream composited frames as MJPEG."""
    boundary = "frame"

    async def frame_iterator() -> AsyncIterator[bytes]:
        try:
            async for frame in engine.preview_stream():
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
    queue = engine.register_ui()
    try:
        while True:
            try:
                event = await queue.get()
            except asyncio.CancelledError:
                break

            payload = {"type": event.type, "data": event.data}
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
        engine.unregister_ui(queue)
        try:
            await ws.close()
        except Exception:
            pass
