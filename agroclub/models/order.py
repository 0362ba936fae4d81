from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from agroclub.models.database import Base

ORDER_STATUS_NEW = "new"
ORDER_STATUS_PAID = "paid"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # Telegram id of the buyer
    store_code = Column(String(64), nullable=True)
    total_amount = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(32), nullable=False, default="kaspi_link")
    status = Column(String(32), nullable=False, default=ORDER_STATUS_NEW)  # new | paid
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    unit = Column(String(64), nullable=False)
    qty = Column(Numeric(12, 3), nullable=False)
    price = Column(Integer, nullable=False)  # unit price at order time
    amount = Column(Integer, nullable=False)  # trunc(qty * price), never recomputed
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="items")
