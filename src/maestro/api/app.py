"""
Core API backend for Maestro.

This module exposes chat sessions through a RESTful API that's used by frontends.
It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **POST /sessions/{id}/messages** - send a message: {"content": "...", "mode": "agent"}
- **GET /sessions/{id}/messages** - the conversation so far.
- **GET /sessions/{id}/plan** - the plan awaiting approval or executing.
- **POST /sessions/{id}/plans/{plan_id}/approve|reject** - decide on a pending plan.
- **PATCH /sessions/{id}/plans/{plan_id}/tasks/{task_id}** - edit a task before approval.
- **POST /sessions/{id}/stop** - stop whatever the session is doing.

Plan-mode messages return immediately; the plan then waits for approval in the background.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Coroutine,
    Dict,
    List,
    Set,
)

from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    status,
)
from fastapi.middleware.cors import CORSMiddleware

from maestro.agent.factory import SessionFactory
from maestro.agent.session import ChatSession
from maestro.api.models import (
    ActionResponse,
    MessageRequest,
    MessagesResponse,
    PlanResponse,
    SessionRequest,
    SessionResponse,
    TaskPatch,
)
from maestro.common import (
    AnsiColors,
    colored_print,
)
from maestro.config import settings
from maestro.core.schema import (
    ChatMode,
    ModelProfile,
)

logger = logging.getLogger(__name__)

# Session storage (in-memory for now, could be moved to a database)
sessions: Dict[str, ChatSession] = {}

factory = SessionFactory(settings)

# Plan-mode turns outlive the request that started them
_background: Set["asyncio.Task[object]"] = set()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    for session in sessions.values():
        session.stop()
    for task in list(_background):
        task.cancel()
    await factory.aclose()


app = FastAPI(
    title="Maestro API",
    version="0.1.0",
    description="Maestro agent orchestration API",
    lifespan=lifespan,
)

# Add CORS middleware to allow requests from local frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_session(session_id: str) -> ChatSession:
    """Get an existing session or answer 404."""
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


def _messages_response(session: ChatSession) -> MessagesResponse:
    return MessagesResponse(
        session_id=session.id,
        messages=session.messages,
        used_tokens=session.used_tokens,
        last_error=session.last_error,
        is_generating=session.is_generating,
    )


def _session_response(session: ChatSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.id,
        model=session.profile.model,
        provider=session.profile.provider,
        tools=[tool.name for tool in session.tools],
    )


def _run_in_background(coro: Coroutine[Any, Any, Any]) -> None:
    task = asyncio.ensure_future(coro)
    _background.add(task)

    def _done(finished: "asyncio.Task[object]") -> None:
        _background.discard(finished)
        if not finished.cancelled() and finished.exception() is not None:
            logger.error("Background turn failed: %r", finished.exception())

    task.add_done_callback(_done)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(req: SessionRequest | None = None) -> SessionResponse:
    """Create a new conversation session, optionally overriding the configured model."""
    profile = ModelProfile.from_settings(settings)
    if req is not None:
        overrides = req.model_dump(exclude_none=True)
        profile = profile.model_copy(update=overrides)
    session = await factory.create(profile)
    sessions[session.id] = session
    return _session_response(session)


@app.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """List all active session IDs."""
    return list(sessions.keys())


@app.post(
    "/sessions/{session_id}/messages",
    response_model=MessagesResponse,
    summary="Send a message",
)
async def send_message(session_id: str, req: MessageRequest, response: Response) -> MessagesResponse:
    """
    Answer a user message.

    ``ask`` and ``agent`` turns run to completion before responding.  A ``plan`` turn is started in
    the background and answered with 202; poll the plan endpoint to approve it.
    """
    session = get_session(session_id)
    if session.is_generating:
        raise HTTPException(status_code=409, detail="Session is busy")
    if not session.profile.is_configured:
        raise HTTPException(
            status_code=400, detail="Session is not configured: set a model (and endpoint)"
        )

    mode = req.mode or ChatMode(settings.CHAT_MODE)
    logger.debug("Session %s: %s message (%d chars)", session_id, mode.value, len(req.content))

    if mode == ChatMode.PLAN:
        _run_in_background(session.send(req.content, mode, req.attachments))
        # Let the turn add its messages before answering
        await asyncio.sleep(0)
        response.status_code = status.HTTP_202_ACCEPTED
        return _messages_response(session)

    await session.send(req.content, mode, req.attachments)
    return _messages_response(session)


@app.get(
    "/sessions/{session_id}/messages",
    response_model=MessagesResponse,
    summary="Get the conversation",
)
async def get_messages(session_id: str) -> MessagesResponse:
    return _messages_response(get_session(session_id))


@app.get("/sessions/{session_id}/plan", response_model=PlanResponse, summary="Get the current plan")
async def get_plan(session_id: str) -> PlanResponse:
    session = get_session(session_id)
    return PlanResponse(session_id=session.id, plan=session.gate.plan, state=session.gate.state.value)


@app.post(
    "/sessions/{session_id}/plans/{plan_id}/approve",
    response_model=ActionResponse,
    summary="Approve a pending plan",
)
async def approve_plan(session_id: str, plan_id: str) -> ActionResponse:
    session = get_session(session_id)
    if not session.approve_plan(plan_id):
        raise HTTPException(status_code=409, detail=f"Plan '{plan_id}' is not pending approval")
    return ActionResponse(ok=True)


@app.post(
    "/sessions/{session_id}/plans/{plan_id}/reject",
    response_model=ActionResponse,
    summary="Reject a pending plan",
)
async def reject_plan(session_id: str, plan_id: str) -> ActionResponse:
    session = get_session(session_id)
    if not session.reject_plan(plan_id):
        raise HTTPException(status_code=409, detail=f"Plan '{plan_id}' is not pending approval")
    return ActionResponse(ok=True)


@app.patch(
    "/sessions/{session_id}/plans/{plan_id}/tasks/{task_id}",
    response_model=ActionResponse,
    summary="Edit a task of a pending plan",
)
async def edit_task(session_id: str, plan_id: str, task_id: str, patch: TaskPatch) -> ActionResponse:
    session = get_session(session_id)
    task = session.gate.edit_task(plan_id, task_id, name=patch.name, description=patch.description)
    if task is None:
        raise HTTPException(status_code=409, detail=f"Task '{task_id}' cannot be edited")
    return ActionResponse(ok=True)


@app.post("/sessions/{session_id}/stop", response_model=ActionResponse, summary="Stop generating")
async def stop_session(session_id: str) -> ActionResponse:
    get_session(session_id).stop()
    return ActionResponse(ok=True)


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the Maestro API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful during development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg‑import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Maestro API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    if not settings.MODEL:
        logger.warning("No MODEL configured; sessions must set one when they are created")

    logger.debug("API settings: %s", settings.model_dump(exclude={"OLLAMA_API_KEY", "MCP_API_KEY"}))

    colored_print(f"🎼 Maestro API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    uvicorn.run(
        "maestro.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m maestro.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
