from enum import Enum


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ESCALATED = "escalated"


class DisputeReason(str, Enum):
    ITEM_NOT_RECEIVED = "item_not_received"
    ITEM_NOT_AS_DESCRIBED = "item_not_as_described"
    DAMAGED_ITEM = "damaged_item"
    WRONG_ITEM = "wrong_item"
    SELLER_NO_SHOW = "seller_no_show"
    BUYER_NO_SHOW = "buyer_no_show"
    PAYMENT_ISSUE = "payment_issue"
    OTHER = "other"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DisputeDecision(str, Enum):
    BUYER_FAVOR = "buyer_favor"
    SELLER_FAVOR = "seller_favor"
    PARTIAL_REFUND = "partial_refund"
    NO_FAULT = "no_fault"
