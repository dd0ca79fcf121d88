import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from stewards.database import Base


class ItemEntry(Base):
    __tablename__ = "item_entries"
    __table_args__ = (UniqueConstraint("item_id", "inspector_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String(36), ForeignKey("contract_checklist_items.id"), nullable=False)
    inspector_id = Column(String(36), ForeignKey("inspectors.id"), nullable=False)
    remarks = Column(Text)
    created_on = Column(DateTime(timezone=True), server_default=func.now())
    updated_on = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    item = relationship("ContractChecklistItem", back_populates="entries")
    media = relationship("ItemEntryMedia", back_populates="entry", order_by="ItemEntryMedia.created_on")


class ItemEntryMedia(Base):
    __tablename__ = "item_entry_media"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entry_id = Column(String(36), ForeignKey("item_entries.id"), nullable=False)
    task_id = Column(String(36), ForeignKey("checklist_tasks.id"))
    url = Column(Text, nullable=False)
    caption = Column(Text)
    media_type = Column(String(8), nullable=False, default="PHOTO")  # PHOTO, VIDEO
    source_message_id = Column(String(128), unique=True)
    created_on = Column(DateTime(timezone=True), server_default=func.now())

    entry = relationship("ItemEntry", back_populates="media")
