import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from stewards.database import Base


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False)
    status = Column(String(16), nullable=False, default="SCHEDULED")  # SCHEDULED, STARTED, CANCELLED, COMPLETED
    scheduled_start = Column(DateTime(timezone=True), nullable=False)
    scheduled_end = Column(DateTime(timezone=True))
    actual_start = Column(DateTime(timezone=True))
    actual_end = Column(DateTime(timezone=True))

    contract = relationship("Contract", back_populates="work_orders")
    assignments = relationship(
        "WorkOrderInspector",
        back_populates="work_order",
        order_by="WorkOrderInspector.position",
    )


class WorkOrderInspector(Base):
    __tablename__ = "work_order_inspectors"
    __table_args__ = (UniqueConstraint("work_order_id", "inspector_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    work_order_id = Column(String(36), ForeignKey("work_orders.id"), nullable=False)
    inspector_id = Column(String(36), ForeignKey("inspectors.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # 0 = first assigned

    work_order = relationship("WorkOrder", back_populates="assignments")
    inspector = relationship("Inspector", back_populates="assignments")
