"""
Comics Router

The comic page's backend: session state, comic generation, credits,
screenshots and history.

SECURITY: Every endpoint except /credits requires a signed-in Clerk user and
only ever reads or writes that user's own records.
"""

import asyncio
import os
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies.auth import get_current_user_id, get_current_user_id_optional
from app.schemas.comics import (
    GenerateRequest,
    ScreenshotRequest,
    CreditsResponse,
    SessionResponse,
    ComicRecordResponse,
)
from app.services.comic_generator import (
    GenerationOrchestrator,
    GenerationSession,
    GenerationOutcome,
    OutcomeStatus,
    sessions,
)
from app.services.generation_clients import (
    PromptGeneratorClient,
    ImageGeneratorClient,
    get_prompt_generator,
    get_image_generator,
)
from app.services.panel_layout import layout_slots
from app.services.quota_ledger import QuotaLedger, MAX_DAILY_CREDITS

logger = logging.getLogger(__name__)

# Record generations with the conditional insert instead of a plain upsert
ATOMIC_QUOTA = os.getenv("ATOMIC_QUOTA", "false").lower() == "true"

router = APIRouter(prefix="/api/comics", tags=["comics"])


def _session_response(session: GenerationSession, outcome: Optional[GenerationOutcome] = None) -> SessionResponse:
    return SessionResponse(
        state=session.state.value,
        loading=session.loading,
        credits=session.credits,
        max_credits=MAX_DAILY_CREDITS,
        imageUrls=session.panel_set.image_urls,
        imgDesc=session.panel_set.descriptions,
        slots=layout_slots(session.panel_set),
        generation_id=session.generation_id,
        prompt=session.prompt,
        outcome=outcome.status.value if outcome else None,
        message=outcome.message if outcome else None,
    )


@router.get("/session", response_model=SessionResponse)
def get_session(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Load the user's comic page state.

    Credits are recomputed from today's records on every load, which is also
    how the daily reset shows up: a new UTC date simply has no records yet.
    """
    session = sessions.get_or_create(user_id, QuotaLedger(db), refresh_credits=True)
    return _session_response(session)


@router.post("/generate", response_model=SessionResponse)
async def generate_comic(
    request: GenerateRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    prompt_client: PromptGeneratorClient = Depends(get_prompt_generator),
    image_client: ImageGeneratorClient = Depends(get_image_generator)
):
    """
    Generate a comic from a prompt.

    A failed upstream call is not an HTTP error: the response carries
    ``outcome = "failed"`` and the previously displayed panels, unchanged.
    """
    ledger = QuotaLedger(db)
    # Re-read on every submit so the gate sees the daily reset
    session = await asyncio.to_thread(sessions.get_or_create, user_id, ledger, True)
    orchestrator = GenerationOrchestrator(ledger, prompt_client, image_client, atomic_quota=ATOMIC_QUOTA)

    outcome = await orchestrator.submit(session, request.prompt)

    if outcome.status == OutcomeStatus.QUOTA_EXHAUSTED:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=outcome.message
        )

    return _session_response(session, outcome)


@router.get("/credits", response_model=CreditsResponse)
def get_credits(
    user_id: Optional[str] = Depends(get_current_user_id_optional),
    db: Session = Depends(get_db)
):
    """Remaining generations today. Anonymous callers see the full allowance."""
    credits = QuotaLedger(db).compute_remaining_credits(user_id)
    return CreditsResponse(credits=credits, max_credits=MAX_DAILY_CREDITS)


@router.post("/{generation_id}/screenshot", response_model=ComicRecordResponse)
def save_screenshot(
    generation_id: str,
    request: ScreenshotRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """
    Attach the rendered page snapshot to a generation.

    The record is normally already there. If its first write failed, the
    snapshot for the user's currently displayed comic creates it.
    """
    ledger = QuotaLedger(db)
    record = ledger.get_record(generation_id)
    session = sessions.get(user_id)

    if record is None:
        if session is None or session.generation_id != generation_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comic not found")
    elif record.user_id != user_id:
        # Don't reveal that someone else's generation exists
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comic not found")

    prompt = record.prompt if record is not None else session.prompt or ""
    if not ledger.attach_screenshot(user_id, generation_id, request.screenshot_url, prompt=prompt):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save screenshot"
        )

    return ComicRecordResponse.model_validate(ledger.get_record(generation_id))


@router.get("/history", response_model=List[ComicRecordResponse])
def get_history(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """The user's past comics, newest first."""
    return QuotaLedger(db).list_history(user_id, limit=limit)
