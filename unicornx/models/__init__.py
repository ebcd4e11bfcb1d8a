from .base import Base
from .user import User, UserRole, UserStatus
from .plan import Plan, BUNDLE_CATEGORY
from .subscription import Subscription, SubscriptionStatus
from .bot import Bot, BotStatus
from .order import Order, OrderStatus
from .coupon import Coupon, CouponUsage, DiscountType

__all__ = [
    "Base", "User", "UserRole", "UserStatus", "Plan", "BUNDLE_CATEGORY",
    "Subscription", "SubscriptionStatus", "Bot", "BotStatus",
    "Order", "OrderStatus", "Coupon", "CouponUsage", "DiscountType",
]
