from sqlalchemy import Column, DateTime, Integer, String

from ..database import Base
from .product import utcnow


class ProcessedEvent(Base):
    """
    Delivery identifiers of webhook events whose effects are committed.

    Written in the same transaction as the effects, so a redelivered event
    either finds its row (and is skipped) or finds nothing applied.
    """
    __tablename__ = "processed_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    topic = Column(String(100), nullable=False)
    external_id = Column(String(64), nullable=True)
    processed_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ProcessedEvent(event_id='{self.event_id}', topic='{self.topic}')>"
