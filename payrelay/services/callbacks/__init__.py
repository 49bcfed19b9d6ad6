from payrelay.services.callbacks.adapter import (
    CALLBACK_KINDS,
    NETWORK_ACK,
    CallbackAck,
    CallbackAdapter,
    status_for_result_code,
)
from payrelay.services.callbacks.items import ABSENT, CallbackItem, CallbackItems
from payrelay.services.callbacks.validation import MerchantValidator

__all__ = [
    "CALLBACK_KINDS",
    "NETWORK_ACK",
    "CallbackAck",
    "CallbackAdapter",
    "status_for_result_code",
    "ABSENT",
    "CallbackItem",
    "CallbackItems",
    "MerchantValidator",
]
