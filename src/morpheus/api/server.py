"""HTTP and websocket transport for sessions, routed messages and direct worker calls."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..models.agent_result import AgentResult
from ..models.file_operation import FileOperation, FileOperationType
from ..models.message import Message
from ..services.container import ServiceContainer


logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    """Request schema for session creation."""

    user_id: Optional[str] = Field(None, description="Owning user")


class PostMessageRequest(BaseModel):
    """Request schema for a routed message."""

    content: str = Field(..., min_length=1, description="Message text")


class UserControlRequest(BaseModel):
    enabled: Optional[bool] = Field(None, description="New mode; flips the current mode when omitted")


class SessionScopedRequest(BaseModel):
    """Direct worker calls optionally record the exchange in a session."""

    session_id: Optional[str] = Field(None, description="Session to record the exchange in")


class CommandRequest(SessionScopedRequest):
    command: str = Field(..., min_length=1, description="Shell command to run in the sandbox")


class FileOperationRequest(SessionScopedRequest):
    type: FileOperationType = Field(..., description="Operation to perform")
    path: str = Field(default="", description="Sandbox-relative path")
    content: Optional[str] = Field(None, description="New content")
    line_start: Optional[int] = Field(None, description="First line to replace")
    line_end: Optional[int] = Field(None, description="Last line to replace")


class FreeTextRequest(SessionScopedRequest):
    message: str = Field(..., min_length=1, description="Free-text request for the worker")


class BrowseRequest(SessionScopedRequest):
    url: str = Field(..., min_length=1, description="URL to open")


class SearchRequest(SessionScopedRequest):
    query: str = Field(..., min_length=1, description="Search query")


class CreatePlanRequest(SessionScopedRequest):
    goal: str = Field(..., min_length=1, description="Goal to plan for")


class UpdatePlanRequest(SessionScopedRequest):
    plan_id: str = Field(..., min_length=1, description="Plan identifier")
    changes: str = Field(..., min_length=1, description="Requested changes")


class ToolInvokeRequest(SessionScopedRequest):
    tool_name: str = Field(..., min_length=1, description="Registered tool name")
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameter values")


class ToolRegisterRequest(SessionScopedRequest):
    definition: Any = Field(..., description="Structured definition or free-text description")


class CredentialRequest(SessionScopedRequest):
    tool_name: str = Field(..., min_length=1, description="Registered tool name")
    api_key: str = Field(..., min_length=1, description="Credential for the tool")


def create_app(container: ServiceContainer, initialize_agents: bool = True) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Services shared by every request
        initialize_agents: Initialize and shut down the workers with the app lifespan

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if initialize_agents:
            await container.start()
        try:
            yield
        finally:
            if initialize_agents:
                await container.stop()

    app = FastAPI(
        title="Morpheus",
        description="Supervising router for sandboxed capability agents",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container

    server_config = container.config.server
    if server_config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=server_config.cors_origins or ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    sessions = container.sessions

    async def record_exchange(session_id: Optional[str], request_text: str, result: AgentResult) -> None:
        """Append the direct call and its result to the session, if it exists."""
        if not session_id:
            return
        if await sessions.get_session(session_id) is None:
            logger.debug(f"Not recording direct call for unknown session {session_id}")
            return
        await sessions.add_message(session_id, Message.user(request_text))
        await sessions.add_message(session_id, Message.agent(result.content))

    async def history_for(session_id: Optional[str]) -> List[Message]:
        return await sessions.get_messages(session_id) if session_id else []

    # Health

    @app.get("/api/health")
    async def health() -> Dict[str, Any]:
        agents = [await reg.agent.health_check() for reg in container.registry.registrations()]
        return {
            "status": "ok",
            "message": "Morpheus backend is running",
            "sessions": await sessions.session_count(),
            "agents": agents
        }

    # Sessions

    @app.post("/api/sessions", status_code=201)
    async def create_session(request: Optional[CreateSessionRequest] = None) -> Dict[str, Any]:
        session = await sessions.create_session(request.user_id if request else None)
        return session.model_dump(mode="json")

    @app.get("/api/sessions")
    async def list_sessions(user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [session.model_dump(mode="json") for session in await sessions.list_sessions(user_id)]

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        session = await sessions.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.model_dump(mode="json")

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str) -> Dict[str, Any]:
        if not await container.supervisor.delete_session(session_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"deleted": True, "session_id": session_id}

    @app.post("/api/sessions/{session_id}/messages")
    async def post_message(session_id: str, request: PostMessageRequest) -> Dict[str, Any]:
        if await sessions.get_session(session_id) is None:
            raise HTTPException(status_code=404, detail="Session not found")
        result, agent_message = await container.supervisor.dispatch_to_session(session_id, request.content)
        return {
            "message": agent_message.model_dump(mode="json") if agent_message else None,
            "response": result.model_dump(mode="json")
        }

    @app.post("/api/sessions/{session_id}/user-control")
    async def toggle_user_control(session_id: str, request: UserControlRequest) -> Dict[str, Any]:
        mode = await container.channels.toggle_user_control(session_id, request.enabled)
        if mode is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return {"session_id": session_id, "user_control_mode": mode}

    # Terminal

    @app.post("/api/terminal/execute")
    async def terminal_execute(request: CommandRequest) -> AgentResult:
        result = await container.terminal.execute(request.command, request.session_id)
        await record_exchange(request.session_id, f"!exec {request.command}", result)
        return result

    # Editor

    @app.post("/api/editor/execute")
    async def editor_execute(request: FileOperationRequest) -> AgentResult:
        operation = FileOperation(
            type=request.type,
            path=request.path,
            content=request.content,
            line_start=request.line_start,
            line_end=request.line_end
        )
        result = await container.editor.execute(operation, request.session_id)
        await record_exchange(request.session_id, f"!file {request.type.value} {request.path}".rstrip(), result)
        return result

    @app.post("/api/editor/process")
    async def editor_process(request: FreeTextRequest) -> AgentResult:
        result = await container.editor.handle(request.message, await history_for(request.session_id))
        await record_exchange(request.session_id, request.message, result)
        return result

    # Web

    @app.post("/api/web/browse")
    async def web_browse(request: BrowseRequest) -> AgentResult:
        result = await container.web.navigate(request.url, request.session_id)
        await record_exchange(request.session_id, f"Browse to {request.url}", result)
        return result

    @app.post("/api/web/search")
    async def web_search(request: SearchRequest) -> AgentResult:
        result = await container.web.search(request.query, request.session_id)
        await record_exchange(request.session_id, f"Search for {request.query}", result)
        return result

    @app.post("/api/web/screenshot")
    async def web_screenshot(request: SessionScopedRequest) -> AgentResult:
        result = await container.web.screenshot()
        await record_exchange(request.session_id, "Take a screenshot", result)
        return result

    @app.post("/api/web/extract")
    async def web_extract(request: SessionScopedRequest) -> AgentResult:
        result = await container.web.extract_content()
        await record_exchange(request.session_id, "Extract page content", result)
        return result

    # Planner

    @app.post("/api/planner/create")
    async def planner_create(request: CreatePlanRequest) -> AgentResult:
        result = await container.planner.create_plan(request.goal)
        await record_exchange(request.session_id, f"!plan create {request.goal}", result)
        return result

    @app.post("/api/planner/update")
    async def planner_update(request: UpdatePlanRequest) -> AgentResult:
        result = await container.planner.update_plan(request.plan_id, request.changes)
        await record_exchange(request.session_id, f"!plan update {request.plan_id} {request.changes}", result)
        return result

    @app.get("/api/planner/list")
    async def planner_list(session_id: Optional[str] = None) -> AgentResult:
        result = container.planner.list_plans()
        await record_exchange(session_id, "!plan list", result)
        return result

    @app.get("/api/planner/plan/{plan_id}")
    async def planner_get(plan_id: str, session_id: Optional[str] = None) -> AgentResult:
        result = container.planner.get_plan(plan_id)
        await record_exchange(session_id, f"!plan details {plan_id}", result)
        return result

    # Tools

    @app.post("/api/tool/execute")
    async def tool_execute(request: ToolInvokeRequest) -> AgentResult:
        result = await container.tool.invoke(request.tool_name, request.params)
        await record_exchange(request.session_id, f"!tool {request.tool_name}", result)
        return result

    @app.post("/api/tool/register")
    async def tool_register(request: ToolRegisterRequest) -> AgentResult:
        result = await container.tool.register(request.definition)
        await record_exchange(request.session_id, "!register tool", result)
        return result

    @app.post("/api/tool/apikey")
    async def tool_apikey(request: CredentialRequest) -> AgentResult:
        result = container.tool.set_credential(request.tool_name, request.api_key)
        # the secret itself is never written to the session log
        await record_exchange(request.session_id, f"!apikey {request.tool_name} ****", result)
        return result

    @app.get("/api/tool/list")
    async def tool_list(session_id: Optional[str] = None) -> AgentResult:
        result = container.tool.list_tools()
        await record_exchange(session_id, "!list tools", result)
        return result

    @app.post("/api/tool/process")
    async def tool_process(request: FreeTextRequest) -> AgentResult:
        result = await container.tool.handle(request.message, await history_for(request.session_id))
        await record_exchange(request.session_id, request.message, result)
        return result

    # Real-time push

    @app.websocket("/ws/sessions/{session_id}")
    async def session_events(websocket: WebSocket, session_id: str) -> None:
        """Stream session events; accepts `toggle_user_control` requests from the client."""
        await websocket.accept()

        if await sessions.get_session(session_id) is None:
            await websocket.send_json({"event": "error", "payload": {"message": "Session not found"}})
            await websocket.close(code=4004)
            return

        queue = container.channels.join(session_id)

        async def forward_events() -> None:
            while True:
                await websocket.send_json(await queue.get())

        await websocket.send_json({"event": "joined", "session_id": session_id, "payload": {}})
        forwarder = asyncio.create_task(forward_events())
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    request = json.loads(raw)
                except ValueError:
                    request = None
                if not isinstance(request, dict):
                    await websocket.send_json({"event": "error", "payload": {"message": "Expected a JSON object"}})
                    continue
                if request.get("type") == "toggle_user_control":
                    await container.channels.toggle_user_control(session_id, request.get("enabled"))
                else:
                    logger.debug(f"Ignoring websocket request {request.get('type')!r} on session {session_id}")
        except WebSocketDisconnect:
            logger.debug(f"Websocket client left session {session_id}")
        finally:
            forwarder.cancel()
            try:
                await forwarder
            except (asyncio.CancelledError, RuntimeError):
                pass
            container.channels.leave(session_id, queue)

    return app
