from .user import User
from .points import PointBalanceResponse, PointTransactionEntry
from .payment_audit import PaymentAuditLogResponse
from .payments import ResourceRef, PayWithPointsResponse, HybridCheckoutResponse
from .checkout import CheckoutMetadata, parse_checkout_metadata
