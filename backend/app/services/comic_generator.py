"""
Comic Generation Orchestrator

Drives one end-to-end comic generation for a user:

    quota check -> prompt expansion -> image generation -> apply panels
                -> record generation -> recompute credits

Each user has one GenerationSession holding what their page shows. Requests
for the same session are not serialized: every submit takes a sequence
number and only the newest one may change the displayed panels.
"""

import asyncio
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from app.services.generation_clients import (
    GenerationServiceError,
    PromptGeneratorClient,
    ImageGeneratorClient,
)
from app.services.panel_layout import PanelSet
from app.services.quota_ledger import QuotaLedger, CreditDecision, MAX_DAILY_CREDITS

logger = logging.getLogger(__name__)

OUT_OF_CREDITS_NOTICE = "Out of credits"

SESSION_IDLE_TTL_SECONDS = int(os.getenv("SESSION_IDLE_TTL_SECONDS", "3600"))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "1000"))


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    QUOTA_EXHAUSTED = "quota_exhausted"
    STALE = "stale"  # finished after a newer request was submitted


ALLOWED_TRANSITIONS = {
    SessionState.IDLE: {SessionState.SUBMITTING},
    SessionState.SUBMITTING: {SessionState.SUBMITTING, SessionState.SUCCEEDED, SessionState.FAILED},
    SessionState.SUCCEEDED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
}


class InvalidSessionTransition(Exception):
    def __init__(self, current: SessionState, target: SessionState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move generation session from {current.value} to {target.value}")


@dataclass
class GenerationOutcome:
    status: OutcomeStatus
    sequence: Optional[int] = None
    generation_id: Optional[str] = None
    message: Optional[str] = None
    recorded: bool = False


@dataclass
class GenerationSession:
    """Everything one user's comic page displays."""
    user_id: str
    credits: int = MAX_DAILY_CREDITS
    panel_set: PanelSet = field(default_factory=PanelSet)
    state: SessionState = SessionState.IDLE
    loading: bool = False
    latest_sequence: int = 0
    generation_id: Optional[str] = None  # record id of the displayed panel set
    prompt: Optional[str] = None         # prompt of the displayed panel set
    last_outcome: Optional[OutcomeStatus] = None

    def transition(self, target: SessionState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidSessionTransition(self.state, target)
        self.state = target

    def begin_request(self) -> int:
        self.transition(SessionState.SUBMITTING)
        self.latest_sequence += 1
        self.loading = True
        return self.latest_sequence

    def is_latest(self, sequence: int) -> bool:
        return sequence == self.latest_sequence

    def apply_panels(self, panel_set: PanelSet, generation_id: str, prompt: str) -> None:
        # Swapped together so images and captions never come from different generations
        self.panel_set = panel_set
        self.generation_id = generation_id
        self.prompt = prompt

    def finish(self, sequence: int, outcome: OutcomeStatus) -> None:
        """Clear the in-progress state if this was the newest request."""
        if not self.is_latest(sequence):
            return
        self.transition(SessionState.SUCCEEDED if outcome == OutcomeStatus.SUCCEEDED else SessionState.FAILED)
        self.last_outcome = outcome
        self.loading = False
        self.transition(SessionState.IDLE)


class GenerationOrchestrator:
    def __init__(
        self,
        ledger: QuotaLedger,
        prompt_client: PromptGeneratorClient,
        image_client: ImageGeneratorClient,
        atomic_quota: bool = False
    ):
        self.ledger = ledger
        self.prompt_client = prompt_client
        self.image_client = image_client
        self.atomic_quota = atomic_quota

    async def submit(self, session: GenerationSession, prompt: str) -> GenerationOutcome:
        if session.credits == 0:
            logger.info(f"User {session.user_id} is out of credits; generation skipped")
            return GenerationOutcome(status=OutcomeStatus.QUOTA_EXHAUSTED, message=OUT_OF_CREDITS_NOTICE)

        sequence = session.begin_request()
        generation_id = str(uuid.uuid4())
        outcome = GenerationOutcome(status=OutcomeStatus.FAILED, sequence=sequence, generation_id=generation_id)

        try:
            try:
                expansion = await self.prompt_client.expand(prompt)
            except GenerationServiceError as e:
                logger.error(f"Error from prompt-generator: {e.message}")
                outcome.message = e.message
                return outcome

            try:
                image_urls = await self.image_client.generate(expansion.prompts)
            except GenerationServiceError as e:
                logger.error(f"Error from image-generator: {e.message}")
                outcome.message = e.message
                return outcome

            if session.is_latest(sequence):
                session.apply_panels(
                    PanelSet.from_lists(image_urls, expansion.descriptions),
                    generation_id,
                    prompt
                )
                outcome.status = OutcomeStatus.SUCCEEDED
            else:
                logger.info(
                    f"Discarding panels from request {sequence}; request {session.latest_sequence} is newer"
                )
                outcome.status = OutcomeStatus.STALE

            # The images were produced either way, so the credit is spent either way
            outcome.recorded, session.credits = await asyncio.to_thread(
                self._settle, session.user_id, prompt, generation_id
            )
            return outcome
        finally:
            session.finish(sequence, outcome.status)

    def _settle(self, user_id: str, prompt: str, generation_id: str) -> Tuple[bool, int]:
        """Blocking ledger work after a generation: record it, then re-read credits."""
        recorded = self._record(user_id, prompt, generation_id)
        return recorded, self.ledger.compute_remaining_credits(user_id)

    def _record(self, user_id: str, prompt: str, generation_id: str) -> bool:
        if not self.atomic_quota:
            return self.ledger.record_generation(user_id, prompt, generation_id)

        decision = self.ledger.try_consume_credit(user_id, prompt, generation_id)
        if decision == CreditDecision.DENIED:
            logger.warning(f"Generation {generation_id} for user {user_id} exceeded today's limit")
            return False
        return True


# =============================================================================
# SESSION REGISTRY
# =============================================================================

class SessionRegistry:
    """
    Process-local map of user id -> GenerationSession.

    Sessions idle longer than ``idle_ttl`` seconds are dropped, and once
    ``maxsize`` sessions exist the least recently used idle one makes room.
    A session with a request in flight is never evicted. Losing a session only
    loses the displayed panels; credits always come from the ledger.
    """

    def __init__(
        self,
        maxsize: int = MAX_SESSIONS,
        idle_ttl: float = SESSION_IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self._sessions: Dict[str, GenerationSession] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.maxsize = maxsize
        self.idle_ttl = idle_ttl
        self._clock = clock

    def get_or_create(self, user_id: str, ledger: QuotaLedger, refresh_credits: bool = False) -> GenerationSession:
        """Return the user's session; credits are recomputed for new sessions or on request."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            session = self._sessions.get(user_id)
            created = session is None
            if created:
                if len(self._sessions) >= self.maxsize:
                    self._evict_least_recent()
                session = GenerationSession(user_id=user_id)
                self._sessions[user_id] = session
            self._last_seen[user_id] = now

        if created or refresh_credits:
            session.credits = ledger.compute_remaining_credits(user_id)
        return session

    def get(self, user_id: str) -> Optional[GenerationSession]:
        with self._lock:
            now = self._clock()
            self._prune(now)
            session = self._sessions.get(user_id)
            if session is not None:
                self._last_seen[user_id] = now
            return session

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._last_seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _prune(self, now: float) -> None:
        expired = [
            user_id for user_id, seen in self._last_seen.items()
            if now - seen > self.idle_ttl and not self._sessions[user_id].loading
        ]
        for user_id in expired:
            self._remove(user_id)
        if expired:
            logger.debug(f"Dropped {len(expired)} idle generation sessions")

    def _evict_least_recent(self) -> None:
        idle = [
            (seen, user_id) for user_id, seen in self._last_seen.items()
            if not self._sessions[user_id].loading
        ]
        if idle:
            self._remove(min(idle)[1])

    def _remove(self, user_id: str) -> None:
        del self._sessions[user_id]
        del self._last_seen[user_id]


sessions = SessionRegistry()
