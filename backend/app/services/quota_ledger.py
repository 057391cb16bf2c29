"""
Quota Ledger

Computes how many comic generations a user has left today and records the
generations that happened. Nothing "credits remaining" is stored: the comics
table is the single source of truth and the allowance is recomputed from
today's row count on every call.
"""

import logging
from datetime import datetime, date, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import select, insert, func, literal, Date, DateTime, Text, String
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.models import ComicRecord, generate_uuid

logger = logging.getLogger(__name__)


# =============================================================================
# TIER CONFIGURATION
# =============================================================================

MAX_DAILY_CREDITS = 18

# Generations already made today -> credits left. Three or more means none.
CREDIT_TIERS = {
    0: 18,
    1: 12,
    2: 6,
}

DAILY_GENERATION_LIMIT = len(CREDIT_TIERS)


class QuotaReadPolicy(str, Enum):
    """What to report when today's count cannot be read from the store."""
    FAIL_OPEN = "fail_open"      # grant the full allowance
    FAIL_CLOSED = "fail_closed"  # grant nothing


class CreditDecision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


def remaining_credits(count: int) -> int:
    """Map today's generation count onto the remaining daily allowance."""
    if count < 0:
        raise ValueError(f"Generation count cannot be negative: {count}")
    return CREDIT_TIERS.get(count, 0)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


# =============================================================================
# LEDGER
# =============================================================================

class QuotaLedger:
    """Reads and writes generation records for one database session."""

    def __init__(self, db: Session, read_policy: QuotaReadPolicy = QuotaReadPolicy.FAIL_OPEN):
        self.db = db
        self.read_policy = read_policy

    def count_generations_today(self, user_id: str, today: Optional[date] = None) -> int:
        today = today or today_utc()
        return self.db.query(func.count(ComicRecord.id)).filter(
            ComicRecord.user_id == user_id,
            ComicRecord.created_at == today
        ).scalar() or 0

    def compute_remaining_credits(self, user_id: Optional[str], today: Optional[date] = None) -> int:
        """
        Remaining generations for today.

        A missing user id yields the full allowance. A store failure is
        resolved by the ledger's read policy; the default fails open, so an
        outage over-grants rather than locking everyone out.
        """
        if not user_id:
            return MAX_DAILY_CREDITS

        try:
            count = self.count_generations_today(user_id, today)
            # End the read transaction so the connection goes back to the pool
            # while the caller waits on the generation endpoints
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching generation count for user {user_id}: {e}")
            self.db.rollback()
            if self.read_policy == QuotaReadPolicy.FAIL_CLOSED:
                return 0
            return MAX_DAILY_CREDITS

        return remaining_credits(count)

    def record_generation(
        self,
        user_id: Optional[str],
        prompt: str,
        generation_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> bool:
        """
        Write the record for one completed generation.

        Upserts on the generation id, so calling this twice for the same
        generation leaves a single row. Returns False on failure instead of
        raising; the caller has already shown the result and must not undo it.
        """
        if not user_id:
            return False

        generation_id = generation_id or generate_uuid()
        try:
            record = self.db.get(ComicRecord, generation_id)
            if record is None:
                record = ComicRecord(
                    id=generation_id,
                    user_id=user_id,
                    created_at=today or today_utc(),
                    prompt=prompt
                )
                self.db.add(record)
            elif record.user_id != user_id:
                logger.warning(
                    f"Generation {generation_id} belongs to another user; not recording for {user_id}"
                )
                return False
            else:
                record.prompt = prompt
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving generation record for user {user_id}: {e}")
            self.db.rollback()
            return False

    def try_consume_credit(
        self,
        user_id: str,
        prompt: str,
        generation_id: Optional[str] = None,
        today: Optional[date] = None
    ) -> CreditDecision:
        """
        Record a generation only if the user still has credit today.

        The count check and the insert are one INSERT ... SELECT statement, so
        two concurrent requests cannot both slip under the limit through a
        read-then-write gap.
        """
        today = today or today_utc()
        generation_id = generation_id or generate_uuid()

        todays_count = (
            select(func.count(ComicRecord.id))
            .where(ComicRecord.user_id == user_id, ComicRecord.created_at == today)
            .correlate(None)
            .scalar_subquery()
        )
        row = select(
            literal(generation_id, String),
            literal(user_id, String),
            literal(today, Date),
            literal(prompt, Text),
            literal(datetime.now(timezone.utc), DateTime),
        ).where(todays_count < DAILY_GENERATION_LIMIT)

        stmt = insert(ComicRecord).from_select(
            ["id", "user_id", "created_at", "prompt", "updated_at"],
            row,
            include_defaults=False
        )

        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error consuming credit for user {user_id}: {e}")
            self.db.rollback()
            return CreditDecision.DENIED

        if result.rowcount == 1:
            return CreditDecision.ALLOWED

        logger.info(f"Daily generation limit reached for user {user_id}")
        return CreditDecision.DENIED

    def attach_screenshot(
        self,
        user_id: str,
        generation_id: str,
        screenshot_url: str,
        prompt: str = "",
        today: Optional[date] = None
    ) -> bool:
        """
        Attach a rendered snapshot to a generation record.

        Updates the existing row for ``generation_id``; if the initial write
        never landed, inserts the row here instead. Records owned by a
        different user are left alone.
        """
        try:
            record = self.db.get(ComicRecord, generation_id)
            if record is None:
                record = ComicRecord(
                    id=generation_id,
                    user_id=user_id,
                    created_at=today or today_utc(),
                    prompt=prompt,
                    screenshot_url=screenshot_url
                )
                self.db.add(record)
            elif record.user_id != user_id:
                logger.warning(
                    f"User {user_id} tried to attach a screenshot to generation {generation_id}"
                )
                return False
            else:
                record.screenshot_url = screenshot_url
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error saving screenshot for generation {generation_id}: {e}")
            self.db.rollback()
            return False

    def get_record(self, generation_id: str) -> Optional[ComicRecord]:
        return self.db.get(ComicRecord, generation_id)

    def list_history(self, user_id: str, limit: int = 50) -> List[ComicRecord]:
        return self.db.query(ComicRecord).filter(
            ComicRecord.user_id == user_id
        ).order_by(
            ComicRecord.created_at.desc(),
            ComicRecord.updated_at.desc()
        ).limit(limit).all()
