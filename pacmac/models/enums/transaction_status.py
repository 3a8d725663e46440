from enum import Enum


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DELIVERED_PENDING_CONFIRMATION = "delivered_pending_confirmation"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
