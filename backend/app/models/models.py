from sqlalchemy import Column, String, Date, DateTime, Text, Index
from datetime import datetime, timezone
import uuid
from app.database import Base


def generate_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class ComicRecord(Base):
    """
    One generated comic. Doubles as the credit-consumption event: today's
    remaining credits are derived from how many of these a user has for
    today's date.
    """
    __tablename__ = "comics"

    # Generation identifier, assigned when the request starts
    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)  # Clerk user id
    created_at = Column(Date, nullable=False, index=True)  # UTC calendar day, not a timestamp
    prompt = Column(Text, nullable=False)
    screenshot_url = Column(Text, nullable=True)  # data:image/png;base64,...

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_comics_user_day", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<ComicRecord {self.id} user={self.user_id} day={self.created_at}>"
