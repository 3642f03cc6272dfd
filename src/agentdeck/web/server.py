"""FastAPI web bridge exposing the runtime over REST and WebSocket."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..adapters.base import AgentStatusUpdate
from ..chat import ChatSession
from ..config import DeckConfig
from ..errors import AgentDeckError, AgentNotFoundError
from ..runtime import AgentRuntime
from .messages import (
    CancelMessage,
    ClearHistoryMessage,
    ErrorMessage,
    InfoMessage,
    MessageComplete,
    MessageUpdate,
    UserMessage,
    parse_client_message,
    to_payload,
)

logger = logging.getLogger(__name__)


def _agent_info(runtime: AgentRuntime, agent_id: str) -> dict[str, Any]:
    adapter = runtime.get_adapter(agent_id)
    return {**adapter.descriptor.to_dict(), **runtime.status(agent_id).to_dict()}


def _require_agent(runtime: AgentRuntime, agent_id: str) -> None:
    try:
        runtime.get_adapter(agent_id)
    except AgentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


async def _send(websocket: WebSocket, message: Any) -> None:
    try:
        await websocket.send_json(to_payload(message))
    except Exception as e:
        # WebSocket closed or error
        logger.warning(f"Failed to send message to WebSocket: {type(e).__name__}: {e}")


async def _run_turn(websocket: WebSocket, chat: ChatSession, content: str) -> None:
    last = None
    try:
        async for message in chat.send(content):
            last = message
            if message.is_streaming:
                await _send(websocket, MessageUpdate(message=message.to_dict()))
    except Exception as e:
        logger.error(f"Turn on '{chat.agent_id}' crashed: {type(e).__name__}: {e}", exc_info=True)
        await _send(websocket, ErrorMessage(message=f"Server error: {e}"))
        return
    if last is not None:
        state = chat.last_state.value if chat.last_state else "completed"
        await _send(websocket, MessageComplete(message=last.to_dict(), state=state))


def create_app(runtime: AgentRuntime) -> FastAPI:
    """Build the web bridge around ``runtime``.

    Args:
        runtime: Runtime whose agents are exposed

    Returns:
        FastAPI application; shutting it down disconnects every agent
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runtime.disconnect_all()

    app = FastAPI(
        title="agentdeck",
        description="Chat bridge for local coding agents",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    # Enable CORS for development (frontend on different port)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173"],  # Vite default port
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST API endpoints

    @app.get("/api/agents")
    async def list_agents():
        """List all agents with their connection status."""
        return {"agents": [_agent_info(runtime, descriptor.id) for descriptor in runtime.list_agents()]}

    @app.get("/api/agents/{agent_id}")
    async def get_agent(agent_id: str):
        """Get details for a specific agent.

        Raises:
            HTTPException: If agent not found
        """
        _require_agent(runtime, agent_id)
        return _agent_info(runtime, agent_id)

    @app.post("/api/agents/{agent_id}/connect")
    async def connect_agent(agent_id: str):
        _require_agent(runtime, agent_id)
        try:
            await runtime.connect_agent(agent_id)
        except AgentDeckError as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "error": None, "serverUrl": runtime.server_url(agent_id)}

    @app.post("/api/agents/{agent_id}/disconnect")
    async def disconnect_agent(agent_id: str):
        _require_agent(runtime, agent_id)
        await runtime.disconnect_agent(agent_id)
        return {"success": True}

    @app.get("/api/agents/{agent_id}/status")
    async def agent_status(agent_id: str):
        _require_agent(runtime, agent_id)
        return runtime.status(agent_id).to_dict()

    @app.post("/api/agents/{agent_id}/tasks/{task_id}/cancel")
    async def cancel_task(agent_id: str, task_id: str):
        _require_agent(runtime, agent_id)
        await runtime.cancel_turn(agent_id, task_id)
        return {"success": True}

    @app.get("/api/slots/{slot_id}/context")
    async def slot_context(slot_id: str, project_path: str | None = None):
        context_id = runtime.context_id(slot_id, project_path)
        return {
            "slotId": slot_id,
            "contextId": context_id,
            "projectPath": runtime.sessions.project_path_for(context_id),
        }

    @app.delete("/api/slots/{slot_id}")
    async def clear_slot(slot_id: str):
        runtime.clear_context(slot_id)
        return {"success": True}

    # WebSocket endpoint

    @app.websocket("/ws/chat/{agent_id}/{slot_id}")
    async def websocket_chat(websocket: WebSocket, agent_id: str, slot_id: str):
        """Chat with ``agent_id`` in ``slot_id``; one turn runs at a time."""
        client_host = websocket.client.host if websocket.client else "unknown"
        logger.info(f"WebSocket connection request from {client_host} for '{agent_id}' slot '{slot_id}'")
        await websocket.accept()

        try:
            chat = runtime.open_chat(agent_id, slot_id)
        except AgentNotFoundError as e:
            logger.warning(str(e))
            await _send(websocket, ErrorMessage(message=str(e), recoverable=False))
            await websocket.close()
            return

        pending: set[asyncio.Task] = set()
        turn: asyncio.Task | None = None

        def on_status(update: AgentStatusUpdate) -> None:
            if update.agent_id != agent_id:
                return
            task = asyncio.create_task(_send(websocket, InfoMessage(message="status", agent=update.to_dict())))
            pending.add(task)
            task.add_done_callback(pending.discard)

        remove_listener = runtime.on_status(on_status)
        await _send(websocket, InfoMessage(message="connected", agent=_agent_info(runtime, agent_id)))

        try:
            while True:
                data = await websocket.receive_json()
                request = parse_client_message(data) if isinstance(data, dict) else None
                logger.debug(f"Received {type(request).__name__} for '{agent_id}'")

                if isinstance(request, UserMessage):
                    if turn is not None and not turn.done():
                        await _send(websocket, ErrorMessage(message="A turn is already running"))
                        continue
                    if request.project_path:
                        chat.project_path = request.project_path
                    turn = asyncio.create_task(_run_turn(websocket, chat, request.content))

                elif isinstance(request, CancelMessage):
                    await chat.cancel()

                elif isinstance(request, ClearHistoryMessage):
                    logger.info(f"Clearing chat history of slot '{slot_id}'")
                    await chat.clear()
                    await _send(websocket, InfoMessage(message="History cleared"))

                else:
                    message_type = data.get("type") if isinstance(data, dict) else None
                    logger.warning(f"Unknown message type: {message_type}")
                    await _send(websocket, ErrorMessage(message=f"Unknown message type: {message_type}"))

        except WebSocketDisconnect as e:
            logger.info(f"Client disconnected from '{agent_id}' (code={e.code})")
        except Exception as e:
            logger.error(f"Unexpected error in WebSocket handler: {type(e).__name__}: {e}", exc_info=True)
            await _send(websocket, ErrorMessage(message=f"Server error: {e}", recoverable=False))
        finally:
            remove_listener()
            if turn is not None and not turn.done():
                await chat.cancel()
                turn.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await turn

    return app


def serve(runtime: AgentRuntime, host: str, port: int, log_level: str = "info") -> None:
    """Run the web bridge in the foreground until interrupted."""
    import uvicorn

    logger.info(f"Starting agentdeck web bridge at http://{host}:{port}")
    uvicorn.run(create_app(runtime), host=host, port=port, log_level=log_level)


def main():
    """Entry point for the agentdeck-web command."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    config = DeckConfig.from_env()
    serve(AgentRuntime.create_default(config), config.web_host, config.web_port)


if __name__ == "__main__":
    main()
