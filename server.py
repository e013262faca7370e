#!/usr/bin/env python3
"""
Ask System - FastAPI + WebSocket backend for desktop/web front ends
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from agent_context import AgentConfig, AgentContext, STATUS_SETUP_ERROR
from query_resolver import QueryResolver, ResponseEnvelope
from system_info import SystemInfoProvider

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Module-level resolver; set during startup
resolver: Optional[QueryResolver] = None
_agent_ready: bool = False
_agent_error: str = ""
_status_message: str = ""
_ws_clients: set = set()         # connected WebSocket instances

NOT_READY_MESSAGE = "System still initializing, please wait..."


class QueryRequest(BaseModel):
    query: str


async def _broadcast_status():
    """Send the current initialization status to all connected WebSocket clients."""
    msg = {"type": "initialization_status", "message": _status_message}
    for client in list(_ws_clients):
        try:
            await client.send_json(msg)
        except Exception as e:
            logger.debug(f"Dropping status update for a closed client: {e}")


def _make_status_callback(loop: asyncio.AbstractEventLoop):
    """Return a sync callback that records status and schedules WS broadcasts."""
    def _on_status(message: str):
        global _status_message
        _status_message = message
        logger.info(f"Initialization status: {message}")
        asyncio.run_coroutine_threadsafe(_broadcast_status(), loop)
    return _on_status


async def _init_agent():
    """Initialize the agent context in a background thread."""
    global resolver, _agent_ready, _agent_error, _status_message
    loop = asyncio.get_running_loop()
    try:
        context = AgentContext(AgentConfig.from_env())
        # Resolver exists from here on so queries get basic-mode answers
        resolver = QueryResolver(context)
        ok = await asyncio.to_thread(context.initialize, _make_status_callback(loop))
        _agent_ready = ok
        _agent_error = context.init_error
        if ok:
            logger.info("Agent initialized successfully")
        else:
            logger.warning(f"Agent running in basic mode: {_agent_error}")
    except Exception as e:
        _agent_error = str(e)
        _status_message = STATUS_SETUP_ERROR
        logger.error(f"Agent initialization failed: {e}", exc_info=True)
        await _broadcast_status()


def query_system(query: str) -> dict:
    """Resolve one query into the {interpretation, command, rawOutput} envelope."""
    if resolver is None:
        return ResponseEnvelope(interpretation=NOT_READY_MESSAGE).to_dict()
    try:
        return resolver.resolve(query, resolver.context.config.max_retries).to_dict()
    except Exception as e:
        logger.error(f"Error handling query: {e}", exc_info=True)
        return ResponseEnvelope(interpretation=f"Error: {e}").to_dict()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.init_task = asyncio.create_task(_init_agent())
    yield


app = FastAPI(title="Ask System Server", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "ready": _agent_ready,
        "mode": "ai" if _agent_ready else "basic",
        "initialization_status": _status_message,
        "error": _agent_error if _agent_error else None,
    }


@app.get("/system-info")
async def system_info():
    fields = await asyncio.to_thread(SystemInfoProvider().snapshot_fields)
    return {"fields": fields}


@app.post("/query")
async def query(request: QueryRequest):
    logger.info(f"Query request: {request.query[:80]!r}")
    return await asyncio.to_thread(query_system, request.query)


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    _ws_clients.add(ws)
    client = ws.client
    logger.info(f"WebSocket connected: {client}")
    try:
        if _status_message:
            await ws.send_json({"type": "initialization_status", "message": _status_message})

        while True:
            raw = await ws.receive_text()

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            msg_type = data.get("type")
            if msg_type != "query":
                await ws.send_json({
                    "type": "error",
                    "message": f"Unknown message type: {msg_type}",
                })
                continue

            text = str(data.get("query", "")).strip()
            if not text:
                continue

            logger.info(f"Query request: {text[:80]!r}")
            envelope = await asyncio.to_thread(query_system, text)
            logger.info(f"Query done, command={envelope['command']!r}")
            await ws.send_json({"type": "response", **envelope})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {client}")
    except Exception as e:
        logger.error(f"WebSocket connection error: {e}", exc_info=True)
    finally:
        _ws_clients.discard(ws)


def main():
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8765)


if __name__ == "__main__":
    main()
