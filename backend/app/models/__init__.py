from app.models.user import User
from app.models.vendor_profile import VendorProfile
from app.models.product import Product
from app.models.order import Order, OrderItem, OrderShippingDetails
from app.models.payment import Payment
from app.models.escrow_transaction import EscrowTransaction
from app.models.escrow_transition import EscrowTransition
from app.models.payout import Payout
from app.models.vendor_balance import VendorBalance
from app.models.commission_ledger import CommissionLedger
from app.models.dispute import Dispute
from app.models.vendor_rating import VendorRating
from app.models.notification import Notification
from app.models.notification_log import NotificationLog
from app.models.push_subscription import PushSubscription
from app.models.webhook_event import WebhookEvent
from app.models.idempotency_key import IdempotencyKey
from app.models.job_run import JobRun
from app.models.platform_event import PlatformEvent
from app.models.platform_settings import PlatformSettings
from app.models.price_alert import PriceAlert

__all__ = [
    "User",
    "VendorProfile",
    "Product",
    "Order",
    "OrderItem",
    "OrderShippingDetails",
    "Payment",
    "EscrowTransaction",
    "EscrowTransition",
    "Payout",
    "VendorBalance",
    "CommissionLedger",
    "Dispute",
    "VendorRating",
    "Notification",
    "NotificationLog",
    "PushSubscription",
    "WebhookEvent",
    "IdempotencyKey",
    "JobRun",
    "PlatformEvent",
    "PlatformSettings",
    "PriceAlert",
]
