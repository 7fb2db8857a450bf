#!/usr/bin/env python3
"""
server.py - HTTP control surface for interactive recording sessions.

Exposes the SessionManager over a small JSON API (uvicorn + Starlette) so a
dashboard can start/stop sessions and flows and poll session status.

Usage:
    python main.py serve                # listens on SERVER_HOST:SERVER_PORT (default 0.0.0.0:3001)
"""
from __future__ import annotations

import contextlib
import functools
from typing import Any, Awaitable, Callable, Dict, Optional

import uvicorn
from loguru import logger
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from config.settings import settings
from models.errors import InvalidRequestError, NotFoundError
from models.mirror import FlowView, SessionStatusView
from recording.session import SessionManager
from storage.base import MirrorStore, build_store

Handler = Callable[[Request], Awaitable[JSONResponse]]


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _body(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _flow_json(flow: Optional[FlowView]) -> Optional[Dict[str, Any]]:
    if flow is None:
        return None
    return {"id": flow.id, "name": flow.name, "status": flow.status, "screenCount": flow.screen_count}


def _status_json(view: SessionStatusView) -> Dict[str, Any]:
    return {
        "sessionId": view.session_id,
        "status": view.status,
        "startedAt": view.started_at.isoformat(),
        "endedAt": view.ended_at.isoformat() if view.ended_at else None,
        "browserConnected": view.browser_connected,
        "activeFlow": _flow_json(view.active_flow),
        "flows": [_flow_json(f) for f in view.flows],
        "totalScreens": view.total_screens,
    }


def _handles_errors(handler: Handler) -> Handler:
    """Map the error taxonomy onto status codes."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        try:
            return await handler(request)
        except InvalidRequestError as exc:
            return _error(400, str(exc))
        except NotFoundError as exc:
            return _error(404, str(exc))
        except Exception as exc:
            logger.error(f"{request.method} {request.url.path} error: {exc}")
            return _error(500, str(exc))

    return wrapper


# ---------------------------------------------------------------------------
# Starlette app
# ---------------------------------------------------------------------------

def create_app(manager: SessionManager, store: Optional[MirrorStore] = None) -> Starlette:
    """Build the app around ``manager``. ``store`` is closed on shutdown when given."""

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    @_handles_errors
    async def start_recording(request: Request) -> JSONResponse:
        body = await _body(request)
        product_id = body.get("productId")
        if not product_id:
            return _error(400, "productId is required")
        session_id = await manager.start_session(product_id)
        return JSONResponse({"success": True, "sessionId": session_id})

    @_handles_errors
    async def end_recording(request: Request) -> JSONResponse:
        body = await _body(request)
        session_id = body.get("sessionId")
        if not session_id:
            return _error(400, "sessionId is required")
        await manager.end_session(session_id)
        return JSONResponse({"success": True})

    @_handles_errors
    async def recording_status(request: Request) -> JSONResponse:
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return _error(400, "sessionId is required")
        view = await manager.get_session_status(session_id)
        if view is None:
            return _error(404, "Session not found")
        return JSONResponse(_status_json(view))

    @_handles_errors
    async def start_flow(request: Request) -> JSONResponse:
        body = await _body(request)
        session_id = body.get("sessionId")
        flow_name = body.get("flowName")
        flow_id = body.get("flowId")
        logger.info(f"Flow start request: session={session_id} name={flow_name!r} id={flow_id}")
        if not session_id:
            return _error(400, "sessionId is required")
        if not flow_name and not flow_id:
            return _error(400, "flowName or flowId is required")
        flow = await manager.start_flow(session_id, flow_name=flow_name, flow_id=flow_id)
        return JSONResponse({"success": True, "flowId": flow.id, "name": flow.name})

    @_handles_errors
    async def end_flow(request: Request) -> JSONResponse:
        body = await _body(request)
        session_id = body.get("sessionId")
        flow_id = body.get("flowId")
        if not session_id or not flow_id:
            return _error(400, "sessionId and flowId are required")
        screen_count = await manager.end_flow(session_id, flow_id)
        return JSONResponse({"success": True, "screenCount": screen_count})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        yield
        await manager.shutdown()
        if store is not None:
            await store.aclose()

    return Starlette(
        routes=[
            Route("/api/health",               health,           methods=["GET"]),
            Route("/api/recording/start",      start_recording,  methods=["POST"]),
            Route("/api/recording/end",        end_recording,    methods=["POST"]),
            Route("/api/recording/status",     recording_status, methods=["GET"]),
            Route("/api/recording/flow/start", start_flow,       methods=["POST"]),
            Route("/api/recording/flow/end",   end_flow,         methods=["POST"]),
        ],
        lifespan=lifespan,
    )


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    store = build_store()
    app = create_app(SessionManager(store), store)
    host = host or settings.server_host
    port = port or settings.server_port
    logger.info(f"Product Mirror recording server on {host}:{port}")
    uvicorn.run(app, host=host, port=port, loop="asyncio")


if __name__ == "__main__":
    run_server()
