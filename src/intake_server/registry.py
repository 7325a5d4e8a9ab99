"""EngineRegistry — per-session engine instances for the HTTP layer.

The engines are stateful (an open structured question, a pending auto-save)
so each session keeps one live engine between requests.  Chat and form are
mutually exclusive: obtaining one closes the other, and the fresh engine
restores itself from the session store.

Engines left idle for ``idle_ttl`` seconds are dropped (pending form saves
are flushed first) together with their session lock; the next request
restores them from the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from intake_engine.constants import (
    AUTOSAVE_DEBOUNCE,
    ENGINE_IDLE_TTL,
    RECORDING_DELAY,
    SYNC_STEP_DELAY,
)
from intake_engine.conversation import ConversationEngine
from intake_engine.crisis import default_classifier
from intake_engine.form import FormEngine
from intake_engine.interfaces import ChatResponder, CrisisClassifier, OnboardingMutations
from intake_engine.question_bank import QuestionBank
from intake_engine.storage import SessionStore
from intake_engine.sync import SyncReconciler

logger = logging.getLogger(__name__)


class EngineRegistry:
    """Creates, caches and tears down engines keyed by session id."""

    def __init__(
        self,
        *,
        store: SessionStore,
        bank: QuestionBank,
        classifier: CrisisClassifier | None = None,
        responder: ChatResponder | None = None,
        mutations: OnboardingMutations | None = None,
        debounce: float = AUTOSAVE_DEBOUNCE,
        recording_delay: float = RECORDING_DELAY,
        sync_step_delay: float = SYNC_STEP_DELAY,
        idle_ttl: float = ENGINE_IDLE_TTL,
    ) -> None:
        self.store = store
        self.bank = bank
        self._classifier = classifier or default_classifier()
        self._responder = responder
        self._mutations = mutations
        self._debounce = debounce
        self._recording_delay = recording_delay
        self._sync_step_delay = sync_step_delay
        self.idle_ttl = idle_ttl

        self._conversations: dict[str, ConversationEngine] = {}
        self._forms: dict[str, FormEngine] = {}
        self._reconcilers: dict[str, SyncReconciler] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # requests holding or waiting on each session lock
        self._users: dict[str, int] = {}
        self._last_used: dict[str, float] = {}
        self._next_sweep = 0.0

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Per-session lock; routes hold it for the whole request."""
        await self._sweep()
        async with self._hold(session_id):
            yield

    @asynccontextmanager
    async def _hold(self, session_id: str) -> AsyncIterator[None]:
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with self._locks.setdefault(session_id, asyncio.Lock()):
                yield
        finally:
            self._users[session_id] -= 1
            if self._users[session_id] == 0:
                del self._users[session_id]
                del self._locks[session_id]
            if self._has_engines(session_id):
                self._last_used[session_id] = time.monotonic()
            else:
                self._last_used.pop(session_id, None)

    def _has_engines(self, session_id: str) -> bool:
        return (
            session_id in self._conversations
            or session_id in self._forms
            or session_id in self._reconcilers
        )

    async def scan_inbound(self, session_id: str, text: str) -> bool:
        """Flag crisis language in *text* without waiting on the session lock.

        Returns True on a match.  The flag is persisted before returning.
        """
        engine = self._conversations.get(session_id)
        if engine is not None:
            return await engine.scan_inbound(text)
        if not self._classifier.detect(text):
            return False
        await self.store.flag_crisis(session_id)
        return True

    # ------------------------------------------------------------------
    # Engines
    # ------------------------------------------------------------------

    async def conversation(self, session_id: str) -> ConversationEngine:
        engine = self._conversations.get(session_id)
        if engine is None:
            await self._close_form(session_id)
            engine = ConversationEngine(
                session_id,
                store=self.store,
                bank=self.bank,
                responder=self._responder,
                classifier=self._classifier,
                recording_delay=self._recording_delay,
            )
            await engine.start()
            self._conversations[session_id] = engine
            self._last_used[session_id] = time.monotonic()
            logger.debug("Conversation engine started for %s", session_id)
        return engine

    async def form(self, session_id: str) -> FormEngine:
        engine = self._forms.get(session_id)
        if engine is None:
            self._conversations.pop(session_id, None)
            engine = FormEngine(session_id, store=self.store, debounce=self._debounce)
            await engine.start()
            self._forms[session_id] = engine
            self._last_used[session_id] = time.monotonic()
            logger.debug("Form engine started for %s", session_id)
        return engine

    def reconciler(self, session_id: str) -> SyncReconciler:
        if self._mutations is None:
            raise ValueError("Sync is not configured: no GraphQL endpoint")
        reconciler = self._reconcilers.get(session_id)
        if reconciler is None:
            reconciler = SyncReconciler(
                session_id,
                store=self.store,
                mutations=self._mutations,
                step_delay=self._sync_step_delay,
            )
            self._reconcilers[session_id] = reconciler
            self._last_used[session_id] = time.monotonic()
        return reconciler

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _close_form(self, session_id: str) -> None:
        engine = self._forms.pop(session_id, None)
        if engine is not None:
            await engine.saver.flush()
            await engine.close()

    async def discard(self, session_id: str) -> None:
        """Forget every engine of *session_id* (pending form saves complete)."""
        await self._close_form(session_id)
        self._conversations.pop(session_id, None)
        self._reconcilers.pop(session_id, None)
        self._last_used.pop(session_id, None)

    async def evict_idle(self, now: float | None = None) -> list[str]:
        """Discard the engines of sessions idle for at least ``idle_ttl``.

        Sessions with a request in flight are skipped.  Returns the evicted
        session ids.
        """
        now = time.monotonic() if now is None else now
        idle = [
            session_id
            for session_id, used in self._last_used.items()
            if session_id not in self._users and now - used >= self.idle_ttl
        ]
        evicted = []
        for session_id in idle:
            # A request may have arrived while an earlier eviction awaited
            if session_id in self._users:
                continue
            async with self._hold(session_id):
                await self.discard(session_id)
            evicted.append(session_id)
        if evicted:
            logger.info("Evicted %d idle session engine(s)", len(evicted))
        return evicted

    async def _sweep(self) -> None:
        now = time.monotonic()
        if now < self._next_sweep:
            return
        self._next_sweep = now + min(self.idle_ttl, 60)
        await self.evict_idle(now)

    async def close(self) -> None:
        """Flush pending auto-saves of every open form (call on shutdown)."""
        for session_id in list(self._forms):
            await self._close_form(session_id)
        self._conversations.clear()
        self._reconcilers.clear()
        self._last_used.clear()
