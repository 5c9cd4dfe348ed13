from .points import LineItem, PointsEntry, PointsCreateRequest
from .payments import PaymentRecord, PaymentHistoryGroup, MerchantPayoutProfile
from .settlement import SettlementBatchResult
