import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from stewards.database import Base


class ChecklistTask(Base):
    __tablename__ = "checklist_tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String(36), ForeignKey("contract_checklist_items.id"), nullable=False)
    entry_id = Column(String(36), ForeignKey("item_entries.id"))
    inspector_id = Column(String(36), ForeignKey("inspectors.id"))
    name = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="PENDING")  # PENDING, COMPLETED
    condition = Column(String(16))  # GOOD, FAIR, UNSATISFACTORY, UN_OBSERVABLE, NOT_APPLICABLE
    cause = Column(Text)
    resolution = Column(Text)
    updated_on = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    item = relationship("ContractChecklistItem", back_populates="tasks")
