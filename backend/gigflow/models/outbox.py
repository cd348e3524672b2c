from sqlalchemy import Column, DateTime, Integer, String, Text

from .base import BaseModel


class OutboxEvent(BaseModel):
    """Notification waiting for delivery to the dispatcher."""

    __tablename__ = "outbox_events"

    id            = Column(Integer, primary_key=True, index=True)
    user_id       = Column(Integer, nullable=False, index=True)
    topic         = Column(String(255), nullable=False)
    payload_json  = Column(Text, nullable=False)
    delivered_at  = Column(DateTime, nullable=True, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error    = Column(Text, nullable=True)
