from agroclub.models.database import Base, SessionLocal, get_db
from agroclub.models.user import User
from agroclub.models.store import Store
from agroclub.models.order import Order, OrderItem
from agroclub.models.subscription import Subscription

__all__ = ["Base", "SessionLocal", "get_db", "User", "Store", "Order", "OrderItem", "Subscription"]
