from coinpay.models.audit_log import AuditLog
from coinpay.models.credit_transaction import CreditTransaction
from coinpay.models.failed_job import FailedJob
from coinpay.models.recharge_order import RechargeOrder
from coinpay.models.user import User

__all__ = [
    "AuditLog",
    "CreditTransaction",
    "FailedJob",
    "RechargeOrder",
    "User",
]
