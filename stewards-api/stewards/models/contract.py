import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from stewards.database import Base


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_name = Column(Text)
    property_address = Column(Text)
    postal_code = Column(String(16))
    status = Column(String(16), nullable=False, default="CONFIRMED")
    created_on = Column(DateTime(timezone=True), server_default=func.now())

    checklist = relationship("ContractChecklist", back_populates="contract", uselist=False)
    work_orders = relationship("WorkOrder", back_populates="contract")


class ContractChecklist(Base):
    __tablename__ = "contract_checklists"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, unique=True)

    contract = relationship("Contract", back_populates="checklist")
    items = relationship(
        "ContractChecklistItem",
        back_populates="checklist",
        order_by="ContractChecklistItem.order",
    )


class ContractChecklistItem(Base):
    __tablename__ = "contract_checklist_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_checklist_id = Column(String(36), ForeignKey("contract_checklists.id"), nullable=False)
    name = Column(Text, nullable=False)  # location label, e.g. "Living Room"
    order = Column(Integer, nullable=False, default=0)
    remarks = Column(Text)
    entered_on = Column(DateTime(timezone=True))
    entered_by_id = Column(String(36), ForeignKey("inspectors.id"))

    checklist = relationship("ContractChecklist", back_populates="items")
    tasks = relationship("ChecklistTask", back_populates="item", order_by="ChecklistTask.order")
    entries = relationship("ItemEntry", back_populates="item")
