"""SQLAlchemy ORM models for IndexNow billing."""

from indexnow.models.base import Base
from indexnow.models.user import User
from indexnow.models.user_profile import UserProfile
from indexnow.models.payment_package import PaymentPackage
from indexnow.models.payment_gateway import PaymentGateway
from indexnow.models.subscription import PaymentSubscription
from indexnow.models.transaction import PaymentTransaction
from indexnow.models.paddle_transaction import PaddleTransaction
from indexnow.models.paddle_webhook_event import PaddleWebhookEvent
from indexnow.models.system_error_log import SystemErrorLog

__all__ = [
    "Base",
    "User",
    "UserProfile",
    "PaymentPackage",
    "PaymentGateway",
    "PaymentSubscription",
    "PaymentTransaction",
    "PaddleTransaction",
    "PaddleWebhookEvent",
    "SystemErrorLog",
]
