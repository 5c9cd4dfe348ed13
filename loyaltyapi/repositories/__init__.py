from .base import BaseRepository
from .points_repository import PointsRepository
from .payment_repository import PaymentRepository
from .account_repository import AccountRepository
