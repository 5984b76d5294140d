"""HTTP surface: a single streaming chat endpoint."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

import structlog
from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from bookkeeping_agent.chat import ChatService
from bookkeeping_agent.clients import BookkeepingAPIClient, create_model_client
from bookkeeping_agent.config import AgentLimits, configure_logging, get_settings
from bookkeeping_agent.memory import AsyncSQLiteConnection, MemoryStore

logger = structlog.get_logger(__name__)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    session_id: str | None = None


def build_chat_service() -> ChatService:
    """Wire the chat service from application settings."""
    settings = get_settings()
    memory = MemoryStore(
        AsyncSQLiteConnection(settings.database_path),
        context_max_chars=settings.context_max_chars,
    )
    return ChatService(
        model=create_model_client(),
        backend=BookkeepingAPIClient(),
        memory=memory,
        limits=AgentLimits.from_settings(settings),
        currency=settings.default_currency,
    )


def create_app(service: ChatService | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        service: Chat service to use; built from settings when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is None:
            configure_logging(service="chat-api")
            app.state.chat_service = build_chat_service()
        else:
            app.state.chat_service = service
        chat_service: ChatService = app.state.chat_service
        await chat_service.memory.init_db()
        yield
        await chat_service.wait_for_background()
        await chat_service.backend.close()

    app = FastAPI(title="Bookkeeping Agent", lifespan=lifespan)

    @app.post("/chat")
    async def chat(
        body: ChatRequest,
        request: Request,
        x_user_id: str | None = Header(default=None),
        x_session_id: str | None = Header(default=None),
    ) -> StreamingResponse:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header"
            )

        chat_service: ChatService = request.app.state.chat_service
        try:
            turn = await chat_service.start_turn(
                x_user_id,
                [m.model_dump() for m in body.messages],
                session_id=body.session_id or x_session_id,
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

        return StreamingResponse(
            turn.events,
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "X-Session-Id": turn.session_id,
            },
        )

    return app
