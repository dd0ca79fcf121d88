import uuid

from sqlalchemy import Column, DateTime, String, Text, func
from sqlalchemy.orm import relationship

from stewards.database import Base


class Inspector(Base):
    __tablename__ = "inspectors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False)
    mobile_phone = Column(String(32), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE
    created_on = Column(DateTime(timezone=True), server_default=func.now())

    assignments = relationship("WorkOrderInspector", back_populates="inspector")
