from sqlalchemy import BigInteger, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from agroclub.models.database import Base

SUBSCRIPTION_PENDING = "pending"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_REJECTED = "rejected"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_CANCELLED = "cancelled"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False, index=True)  # Telegram id (users.user_id)
    phone = Column(String(64), nullable=True)
    status = Column(String(32), nullable=False, default=SUBSCRIPTION_PENDING)  # pending | active | rejected | expired | cancelled
    amount = Column(Integer, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
