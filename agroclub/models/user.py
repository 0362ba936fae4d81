from sqlalchemy import BigInteger, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from agroclub.models.database import Base

SUB_STATUS_INACTIVE = "inactive"
SUB_STATUS_PENDING = "pending"
SUB_STATUS_ACTIVE = "active"
SUB_STATUS_EXPIRED = "expired"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, unique=True, index=True, nullable=False)  # Telegram id
    nickname = Column(String(255), nullable=False, default="user")
    phone = Column(String(64), nullable=True)
    sub_status = Column(String(32), nullable=False, default=SUB_STATUS_INACTIVE)  # inactive | pending | active | expired
    sub_until = Column(DateTime(timezone=True), nullable=True)
    selected_store = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
