"""
Talk-mode Session Lifecycle Controller

Owns the readiness gate and is the only caller of the image landing store.

    IDLE --upload_batch--> READY --visual query--> IDLE
    IDLE --start_capture--> AWAITING_IMAGES --upload_batch--> READY

A ready image pair answers at most one visual question. Cleanup runs after
the gateway call returns (reply, fallback, timeout or cancellation), never
before.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from cachetools import TTLCache

from context_assembler import ReasoningRequest, assemble
from errors import ImageNotFound, ImageStorageError, IncompleteUploadBatch
from image_store import ImageLandingStore, ImagePair, ImageTag, validate_session_id
from query_classifier import Classifier, QueryKind, classify

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

NOT_READY_REPLY = "Please wait, I am still getting a clear view. Ask me again in a moment."
EMPTY_QUERY_REPLY = "I did not hear a question. Please try again."

# Event names pushed to clients
EVENT_READY = "talk:ready"
EVENT_REPLY = "talk:reply"
EVENT_CAPTURE = "talk:capture"


class TalkState(Enum):
    IDLE = "idle"
    AWAITING_IMAGES = "awaiting_images"
    READY = "ready"


class ReasoningGateway(Protocol):
    async def send(self, request: ReasoningRequest) -> str: ...


@dataclass
class TalkEvent:
    """Outbound message produced by a state transition."""
    name: str
    session_id: str
    payload: Dict[str, Any]
    caller_id: Optional[str] = None  # Deliver only to this caller when set


EventSink = Callable[[TalkEvent], Awaitable[None]]


async def _discard_event(event: TalkEvent) -> None:
    return None


@dataclass
class TalkReply:
    """Result of one query."""
    text: str
    kind: Optional[QueryKind]
    consumed: bool = False


@dataclass
class TalkConfig:
    """Tunable parameters for the controller."""
    # Idle sessions are forgotten after this long
    session_ttl_seconds: float = 3600.0
    max_sessions: int = 1024

    # Attempts for delete-after-consume before giving up and logging
    cleanup_attempts: int = 2


@dataclass
class TalkSession:
    """Per-device talk state. Guarded by its own lock."""
    session_id: str
    state: TalkState = TalkState.IDLE
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # Operations holding or waiting for the lock
    holders: int = 0

    @property
    def is_ready(self) -> bool:
        return self.state is TalkState.READY

    def mark_ready(self):
        self.state = TalkState.READY

    def mark_not_ready(self, awaiting: bool = False):
        self.state = TalkState.AWAITING_IMAGES if awaiting else TalkState.IDLE


class SessionCache(TTLCache):
    """TTLCache that reports every session it drops, by size or by age."""

    def __init__(self, maxsize, ttl, on_evict: Callable[[str, TalkSession], None]):
        super().__init__(maxsize=maxsize, ttl=ttl)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(key, value)
        return key, value

    def expire(self, time=None):
        expired = super().expire(time)
        for key, value in expired or ():
            self._on_evict(key, value)
        return expired


class TalkSessionController:
    """
    Orchestrates uploads, capture signals and queries for every session.
    """

    def __init__(
        self,
        store: ImageLandingStore,
        gateway: ReasoningGateway,
        classifier: Classifier = classify,
        emit: Optional[EventSink] = None,
        config: Optional[TalkConfig] = None
    ):
        if config is None:
            config = TalkConfig()
        self.store = store
        self.gateway = gateway
        self.classifier = classifier
        self.emit = emit or _discard_event
        self.config = config
        # Sessions with a running or queued operation; never dropped while listed here
        self._active: Dict[str, TalkSession] = {}
        self._sessions = SessionCache(
            maxsize=config.max_sessions,
            ttl=config.session_ttl_seconds,
            on_evict=self._on_evict
        )

    # ------------------------------------------------------------------
    # Session bookkeeping
    # ------------------------------------------------------------------

    def session(self, session_id: str = DEFAULT_SESSION_ID) -> TalkSession:
        """Return the session for an id, creating it on first use."""
        validate_session_id(session_id)
        session = self._active.get(session_id) or self._sessions.get(session_id)
        if session is None:
            session = TalkSession(session_id=session_id)
        # Re-insert on every access so the TTL counts from last activity
        self._sessions[session_id] = session
        return session

    def _on_evict(self, session_id: str, session: TalkSession):
        if session.holders:
            # Still in use; its own operation finishes the cleanup
            return
        logger.info(f"🧹 Session {session_id} evicted, purging its images")
        try:
            self.store.delete_all(session_id)
        except OSError as e:
            logger.error(f"❌ Image cleanup failed for evicted session {session_id}: {e}")

    @asynccontextmanager
    async def _exclusive(self, session: TalkSession):
        """Hold the session lock and pin the session against eviction meanwhile."""
        session.holders += 1
        self._active[session.session_id] = session
        try:
            async with session.lock:
                yield
        finally:
            session.holders -= 1
            if session.holders == 0 and self._active.get(session.session_id) is session:
                del self._active[session.session_id]
                if session.session_id not in self._sessions:
                    # Evicted while busy: give it a fresh lease instead of orphaning its images
                    self._sessions[session.session_id] = session

    def is_ready(self, session_id: str = DEFAULT_SESSION_ID) -> bool:
        return self.session(session_id).is_ready

    def state(self, session_id: str = DEFAULT_SESSION_ID) -> TalkState:
        return self.session(session_id).state

    async def _publish(self, event: TalkEvent):
        try:
            await self.emit(event)
        except Exception as e:
            logger.error(f"❌ Failed to emit {event.name} for {event.session_id}: {e}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def upload_batch(
        self,
        session_id: str,
        previous: Optional[bytes],
        current: Optional[bytes]
    ) -> TalkSession:
        """
        Store a full image pair and mark the session ready.

        Raises:
            IncompleteUploadBatch: either image missing or empty (no state change)
            ImageStorageError: the pair could not be written (session left not ready)
        """
        missing = [tag.value for tag, data in ((ImageTag.PREVIOUS, previous), (ImageTag.CURRENT, current)) if not data]
        if missing:
            logger.warning(f"⚠️ Rejected partial upload for {session_id}: missing {', '.join(missing)}")
            raise IncompleteUploadBatch(missing)

        session = self.session(session_id)
        async with self._exclusive(session):
            session.mark_not_ready()
            try:
                await asyncio.to_thread(self.store.put, session_id, ImageTag.PREVIOUS, previous)
                await asyncio.to_thread(self.store.put, session_id, ImageTag.CURRENT, current)
            except OSError as e:
                logger.error(f"❌ Could not store images for {session_id}: {e}")
                await self._delete_images(session_id)
                raise ImageStorageError(str(e)) from e

            session.mark_ready()
            logger.info(f"📸 Image pair ready for {session_id} ({len(previous)} + {len(current)} bytes)")
            await self._publish(TalkEvent(EVENT_READY, session_id, {"ready": True}))

        return session

    async def start_capture(self, session_id: str = DEFAULT_SESSION_ID) -> TalkSession:
        """Re-arm: drop any pending pair and ask the device for a fresh one."""
        session = self.session(session_id)
        async with self._exclusive(session):
            session.mark_not_ready(awaiting=True)
            await self._delete_images(session_id)
            logger.info(f"🔄 Capture requested for {session_id}")
            await self._publish(TalkEvent(EVENT_CAPTURE, session_id, {"session_id": session_id}))
        return session

    async def query(
        self,
        text: Optional[str],
        session_id: str = DEFAULT_SESSION_ID,
        caller_id: Optional[str] = None
    ) -> TalkReply:
        """
        Answer one user question. Always produces a reply.

        General-knowledge questions leave the image pair alone. Visual questions
        need a ready pair and consume it.
        """
        session = self.session(session_id)

        if not text or not text.strip():
            reply = TalkReply(EMPTY_QUERY_REPLY, kind=None)
            await self._deliver(session_id, caller_id, reply)
            return reply

        text = text.strip()
        kind = self.classifier(text)
        logger.info(f"🎤 Question for {session_id}: '{text}' | Branch: {kind.value}")

        if kind is QueryKind.GENERAL_KNOWLEDGE:
            reply_text = await self.gateway.send(assemble(kind, text))
            reply = TalkReply(reply_text, kind=kind)
        else:
            reply = await self._answer_visual(session, text)

        await self._deliver(session_id, caller_id, reply)
        return reply

    async def _answer_visual(self, session: TalkSession, text: str) -> TalkReply:
        kind = QueryKind.VISUAL_CONTEXT
        async with self._exclusive(session):
            if not session.is_ready:
                logger.info(f"⏳ Visual question before images were ready ({session.session_id})")
                return TalkReply(NOT_READY_REPLY, kind=kind)

            try:
                pair: ImagePair = await asyncio.to_thread(self.store.load_pair, session.session_id)
            except (ImageNotFound, OSError) as e:
                # Flag said ready but the store disagrees: restore the invariant
                logger.warning(f"⚠️ Ready flag without images for {session.session_id}: {e}")
                session.mark_not_ready()
                return TalkReply(NOT_READY_REPLY, kind=kind)

            try:
                reply_text = await self.gateway.send(assemble(kind, text, pair))
            finally:
                session.mark_not_ready()
                await self._delete_images(session.session_id)

        return TalkReply(reply_text, kind=kind, consumed=True)

    async def _deliver(self, session_id: str, caller_id: Optional[str], reply: TalkReply):
        await self._publish(TalkEvent(EVENT_REPLY, session_id, {"reply": reply.text}, caller_id=caller_id))

    async def _delete_images(self, session_id: str):
        """Purge both images. Failures are retried, then logged, never raised."""
        for attempt in range(1, self.config.cleanup_attempts + 1):
            try:
                await asyncio.to_thread(self.store.delete_all, session_id)
                return
            except OSError as e:
                logger.error(
                    f"❌ Image cleanup failed for {session_id} "
                    f"(attempt {attempt}/{self.config.cleanup_attempts}): {e}"
                )
