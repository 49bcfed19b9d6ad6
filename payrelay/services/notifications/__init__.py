from payrelay.services.notifications.delivery import (
    DeliveryEngine,
    DeliveryOutcome,
    process_notification,
)
from payrelay.services.notifications.dispatch import (
    ArqNotificationDispatcher,
    LocalNotificationDispatcher,
    NotificationDispatcher,
    get_dispatcher,
)
from payrelay.services.notifications.retry import (
    BackoffPolicy,
    ExponentialBackoff,
    FixedBackoff,
    RetryScheduler,
    SweepResult,
    backoff_from_config,
)
from payrelay.services.notifications.signing import serialize_payload, sign, verify_signature

__all__ = [
    "DeliveryEngine",
    "DeliveryOutcome",
    "process_notification",
    "NotificationDispatcher",
    "ArqNotificationDispatcher",
    "LocalNotificationDispatcher",
    "get_dispatcher",
    "BackoffPolicy",
    "FixedBackoff",
    "ExponentialBackoff",
    "RetryScheduler",
    "SweepResult",
    "backoff_from_config",
    "serialize_payload",
    "sign",
    "verify_signature",
]
