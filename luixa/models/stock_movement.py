from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, func

from luixa.core.database import Base


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    type = Column(String, nullable=False)  # OUT / IN
    quantity = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)  # sale / cancellation
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


Index("ix_stock_movements_item_reason", StockMovement.order_item_id, StockMovement.reason, unique=True)
