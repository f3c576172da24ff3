"""
FastAPI backend for the challenge set explorer.

Serves the challenge set catalog and the filtering sessions (set views)
over HTTP, and pushes view updates to WebSocket subscribers.
"""

import asyncio
import os

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from api.app_config import get_app_config
from api.shared.logger import get_logger, setup_logging

config = get_app_config()
setup_logging(config.log_level)
logger = get_logger(__name__)

from api.challenge_sets import router as challenge_sets_router
from api.data_repository import ChallengeSetNotFoundError
from api.shared.predicates import PredicateError
from api.shared.record_store import RecordStoreError
from api.system import router as system_router
from api.view_manager import ViewNotFoundError, view_manager
from api.views import router as views_router
from websocket import ws_manager

# Create FastAPI app
app = FastAPI(
    title="Challenge Set Explorer API",
    description="Filtering, aggregation and export of machine translation challenge sets",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # Only log 5xx errors (server errors)
    if exc.status_code >= 500:
        logger.error("%s failed with %s: %s", request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(ViewNotFoundError)
async def view_not_found_handler(request: Request, exc: ViewNotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"View not found: {exc.args[0]}"})


@app.exception_handler(ChallengeSetNotFoundError)
async def challenge_set_not_found_handler(request: Request, exc: ChallengeSetNotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"Challenge set not found: {exc.args[0]}"})


@app.exception_handler(PredicateError)
async def predicate_error_handler(request: Request, exc: PredicateError):
    logger.warning("%s rejected: %s", request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RecordStoreError)
async def record_store_error_handler(request: Request, exc: RecordStoreError):
    logger.warning("%s rejected: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return JSON response."""
    logger.exception("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routes
app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(challenge_sets_router, prefix="/api")
app.include_router(views_router, prefix="/api")


# ============= Startup Events =============


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    view_manager.attach_loop(asyncio.get_running_loop())
    logger.info("Challenge set explorer starting...")
    logger.info("Data folder: %s", config.data_dir)
    if not config.challenge_set_dir.is_dir():
        logger.warning("No challenge-set folder in %s", config.data_dir)


@app.on_event("shutdown")
async def shutdown_event():
    view_manager.attach_loop(None)
    view_manager.clear()


# ============= WebSocket Endpoints =============


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    WebSocket endpoint for view updates.

    Clients subscribe to ``view:{view_id}`` channels to receive
    view_updated, sample_deleted and view_closed messages.

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "channel": "channel_name",
        "data": {"channel": "view:..."}
    }
    """
    await ws_manager.connect(websocket, client_id)

    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.get("/api/ws/stats")
async def get_websocket_stats():
    """Get WebSocket connection statistics."""
    return {
        "total_connections": ws_manager.get_connection_count(),
    }


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Challenge set explorer backend server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("CHALLENGE_EXPLORER_PORT", 8000)),
        help="Port to run the server on (default: 8000 or CHALLENGE_EXPLORER_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=config.log_level.lower(),
    )
