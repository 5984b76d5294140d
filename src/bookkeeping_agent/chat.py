"""Conversational entry point: one turn in, a stream of events out."""

import asyncio
import json
import weakref
from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog

from bookkeeping_agent.agent.loop import AgentLoop, AgentResult, StepEvent, StopReason
from bookkeeping_agent.clients.base import ModelClient
from bookkeeping_agent.clients.bookkeeping_api import BookkeepingAPIClient
from bookkeeping_agent.config import AgentLimits
from bookkeeping_agent.ledger.guard import BalancedEntryGuard
from bookkeeping_agent.memory.models import Clock, utcnow
from bookkeeping_agent.memory.store import MemoryStore
from bookkeeping_agent.tools.definitions import TOOL_REGISTRY
from bookkeeping_agent.tools.registry import ToolContext, ToolRegistry

logger = structlog.get_logger(__name__)

TITLE_LENGTH = 100
TURN_FAILED_MESSAGE = "Something went wrong while answering. Please try again."


def sse_event(event_type: str, data: dict[str, Any]) -> str:
    """Format one Server-Sent Event."""
    return f"data: {json.dumps({'type': event_type, 'data': data}, default=str)}\n\n"


@dataclass
class ChatTurn:
    """A started turn: the resolved session and its event stream."""

    session_id: str
    events: AsyncIterator[str]


class ChatService:
    """Runs conversational turns for many users concurrently.

    Turns within one session are serialized; turns in different sessions run
    independently.
    """

    def __init__(
        self,
        model: ModelClient,
        backend: BookkeepingAPIClient,
        memory: MemoryStore,
        registry: ToolRegistry | None = None,
        limits: AgentLimits | None = None,
        currency: str = "MYR",
        clock: Clock = utcnow,
    ):
        self.backend = backend
        self.memory = memory
        self.currency = currency
        self.clock = clock
        self.loop = AgentLoop(model, registry or TOOL_REGISTRY, limits)
        self.guard = BalancedEntryGuard(backend, audit=memory, currency=currency)
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._pending_persist: dict[str, asyncio.Task[None]] = {}
        self._background: set[asyncio.Task[None]] = set()

    async def start_turn(
        self,
        user_id: str,
        messages: list[dict[str, Any]],
        session_id: str | None = None,
    ) -> ChatTurn:
        """Resolve the session and return the turn's event stream.

        Args:
            user_id: Authenticated user.
            messages: Conversation so far, ending with the new user message.
            session_id: Existing session to continue, if any.

        Returns:
            ChatTurn with the session id (empty for a transient session).

        Raises:
            ValueError: If there is no user message to answer.
        """
        user_message = next(
            (m.get("content", "") for m in reversed(messages) if m.get("role") == "user"),
            None,
        )
        if not user_message:
            raise ValueError("messages must contain a user message")

        log = logger.bind(user_id=user_id)
        needs_title = False
        try:
            session = await self.memory.get_or_create_session(user_id, session_id)
            resolved_id = session.id
            needs_title = not session.title
        except Exception:
            log.exception("session_unavailable", requested_session_id=session_id)
            resolved_id = ""

        try:
            context = await self.memory.build_context(user_id)
        except Exception:
            log.exception("context_unavailable")
            context = ""

        title = user_message[:TITLE_LENGTH] if resolved_id and needs_title else None
        events = self._run_turn(user_id, resolved_id, messages, user_message, context, title)
        return ChatTurn(session_id=resolved_id, events=events)

    async def _run_turn(
        self,
        user_id: str,
        session_id: str,
        messages: list[dict[str, Any]],
        user_message: str,
        context: str,
        title: str | None,
    ) -> AsyncIterator[str]:
        lock = self._session_lock(session_id) if session_id else asyncio.Lock()
        async with lock:
            queue: asyncio.Queue[str | None] = asyncio.Queue()

            async def listener(event: StepEvent) -> None:
                await queue.put(sse_event(event.type, {"step": event.step, **event.data}))

            async def run() -> AgentResult:
                # The task owns a copy of the context, so these fields stay with this turn
                structlog.contextvars.bind_contextvars(user_id=user_id, session_id=session_id)
                try:
                    return await self.loop.run(
                        messages,
                        ToolContext(
                            user_id=user_id,
                            session_id=session_id,
                            backend=self.backend,
                            guard=self.guard,
                            memory=self.memory,
                            currency=self.currency,
                            clock=self.clock,
                        ),
                        context=context,
                        listener=listener,
                    )
                finally:
                    await queue.put(None)

            task = asyncio.create_task(run())
            try:
                while True:
                    item = await queue.get()
                    if item is None:
                        break
                    yield item
                result = await task
            except Exception:
                logger.exception("turn_failed", user_id=user_id, session_id=session_id)
                yield sse_event("error", {"message": TURN_FAILED_MESSAGE})
                yield sse_event("done", {"session_id": session_id, "stop_reason": "error"})
                return
            finally:
                if not task.done():
                    task.cancel()

            if result.stop_reason == StopReason.ERROR:
                yield sse_event("error", {"message": result.response})
            else:
                yield sse_event("text", {"content": result.response})

            if session_id:
                self._persist_in_background(session_id, user_message, result.response, title)

            yield sse_event(
                "done",
                {
                    "session_id": session_id,
                    "stop_reason": result.stop_reason.value,
                    "steps": result.steps,
                    "usage": result.usage,
                },
            )

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        """Get the lock for a session; unused locks are dropped with their last holder."""
        lock = self._session_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._session_locks[session_id] = lock
        return lock

    def _persist_in_background(
        self, session_id: str, user_message: str, answer: str, title: str | None
    ) -> None:
        # Called under the session lock, so the chain follows turn order
        previous = self._pending_persist.get(session_id)
        task = asyncio.create_task(
            self._persist_turn(session_id, user_message, answer, title, previous)
        )
        self._pending_persist[session_id] = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(lambda t: self._forget_persist(session_id, t))

    def _forget_persist(self, session_id: str, task: asyncio.Task[None]) -> None:
        if self._pending_persist.get(session_id) is task:
            del self._pending_persist[session_id]

    async def _persist_turn(
        self,
        session_id: str,
        user_message: str,
        answer: str,
        title: str | None,
        previous: asyncio.Task[None] | None = None,
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await self.memory.save_turn(session_id, "user", user_message)
            await self.memory.save_turn(session_id, "assistant", answer)
            if title:
                await self.memory.update_session_title(session_id, title, keep_existing=True)
        except Exception:
            logger.exception("turn_persistence_failed", session_id=session_id)

    async def wait_for_background(self) -> None:
        """Wait for pending turn persistence, e.g. on shutdown."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
