from __future__ import annotations


class PayRelayError(Exception):
    """Base error for PayRelay."""


class OperationNotFoundError(PayRelayError):
    """Operation id does not exist."""


class AlreadyBoundError(PayRelayError):
    """Operation already carries network correlation identifiers."""

    def __init__(self, operation_id: str) -> None:
        super().__init__(f"operation {operation_id} is already bound to network correlation ids")
        self.operation_id = operation_id


class InvalidStatusTransitionError(PayRelayError):
    """Operation status may only move from pending to a terminal status."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"cannot transition operation from {current} to {requested}")
        self.current = current
        self.requested = requested


class NoSigningSecretError(PayRelayError):
    """Client has no webhook signing secret; notifications cannot be signed."""


class InvalidWebhookConfigError(PayRelayError):
    """Client webhook configuration is malformed."""
