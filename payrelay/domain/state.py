from __future__ import annotations


OPERATION_KINDS: frozenset[str] = frozenset({"push_payment", "merchant_collection", "disbursement"})
NOTIFICATION_KINDS: frozenset[str] = frozenset(
    {
        "push_payment",
        "merchant_collection",
        "merchant_collection_validation",
        "disbursement",
        "disbursement_timeout",
    }
)
CORRELATION_KINDS: frozenset[str] = frozenset(
    {
        "checkout_request_id",
        "merchant_request_id",
        "conversation_id",
        "originator_conversation_id",
        "network_transaction_id",
    }
)

OPERATION_PENDING = "pending"
OPERATION_TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled", "timed_out"})

NOTIFICATION_PENDING = "pending"
NOTIFICATION_SENT = "sent"
NOTIFICATION_FAILED = "failed"
NOTIFICATION_FAILED_PERMANENT = "failed_permanent"
NOTIFICATION_TERMINAL_STATUSES: frozenset[str] = frozenset({NOTIFICATION_SENT, NOTIFICATION_FAILED_PERMANENT})


def can_transition_operation(current: str, requested: str) -> bool:
    # Operations only ever leave pending, and only for a terminal status.
    return current == OPERATION_PENDING and requested in OPERATION_TERMINAL_STATUSES
