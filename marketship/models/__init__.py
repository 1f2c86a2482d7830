from marketship.models.order import Order, OrderMeta, OrderNote, OrderStatus
from marketship.models.booking import BookingRecord
from marketship.models.estimate_cache import RateEstimateCache
from marketship.models.settlement import RtoSettlement
from marketship.models.wallet import WalletTransaction, WalletTransactionType

__all__ = [
    "Order",
    "OrderMeta",
    "OrderNote",
    "OrderStatus",
    "BookingRecord",
    "RateEstimateCache",
    "RtoSettlement",
    "WalletTransaction",
    "WalletTransactionType",
]
