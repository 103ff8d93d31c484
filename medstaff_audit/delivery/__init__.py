"""
Audit Delivery
==============
Message bus producer and the in-memory retry queue behind it.
"""

from .producer import DeliveryClient, DeliveryState, build_message, build_producer_options
from .retry_queue import RetryItem, RetryQueue

__all__ = [
    "DeliveryClient",
    "DeliveryState",
    "build_message",
    "build_producer_options",
    "RetryItem",
    "RetryQueue",
]
