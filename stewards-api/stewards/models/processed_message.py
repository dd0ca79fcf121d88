from sqlalchemy import Column, DateTime, String, func

from stewards.database import Base


class ProcessedMessage(Base):
    """Durable ledger of provider message ids already handled."""

    __tablename__ = "processed_messages"

    message_id = Column(String(128), primary_key=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
