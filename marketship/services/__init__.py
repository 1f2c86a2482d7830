# Services module
from marketship.services.booking_pipeline import BookingPipeline, BookingResult, BookingStatus
from marketship.services.estimate_cache import EstimateCache
from marketship.services.estimate_service import EstimateService
from marketship.services.logistics_sync import LogisticsSynchronizer
from marketship.services.order_repository import OrderRepository
from marketship.services.settlement_service import SettlementEngine, SettlementResult
from marketship.services.wallet_service import WalletService

__all__ = [
    "BookingPipeline",
    "BookingResult",
    "BookingStatus",
    "EstimateCache",
    "EstimateService",
    "LogisticsSynchronizer",
    "OrderRepository",
    "SettlementEngine",
    "SettlementResult",
    "WalletService",
]
