from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import relationship

from luixa.core.database import Base

ORDER_STATUSES = ("pending", "in_process", "completed", "cancelled")

# marcador durable del saga de confirmación
CONFIRMATION_STEPS = ("header", "items", "stock", "done")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_supplier_sequence", "supplier_id", "sequence_number"),)

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), index=True, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    tracking_code = Column(String(20), unique=True, index=True, nullable=False)

    status = Column(String, default="pending", nullable=False)  # pending / in_process / completed / cancelled
    total_cents = Column(Integer, default=0, nullable=False)
    notes = Column(Text, default="", nullable=False)

    confirmation_step = Column(String, default="header", nullable=False)
    confirmation_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    estimated_delivery_at = Column(DateTime(timezone=True), nullable=True)

    client = relationship("Client")
    supplier = relationship("Supplier")
    order_items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
