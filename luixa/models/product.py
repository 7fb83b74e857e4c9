from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import relationship

from luixa.core.database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (Index("ix_products_supplier_name", "supplier_id", "name"),)

    id = Column(Integer, primary_key=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    category = Column(String, default="", nullable=False)
    size = Column(String, default="", nullable=False)
    price_cents = Column(Integer, nullable=False)
    # solo lo modifican la confirmación (baja) y la cancelación (reposición)
    stock_quantity = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    supplier = relationship("Supplier", back_populates="products")
