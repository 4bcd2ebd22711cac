"""Offer lifecycle: slot calendar, reservations, state machine, pause gate, deadline sweeper.

The engine facade lives in :mod:`placements.scheduling.engine`.
"""

from placements.scheduling.clock import Clock, ManualClock, SystemClock
from placements.scheduling.models import (
    Blogger,
    Channel,
    CreateOffersResult,
    DeliveryHandle,
    NotifyKind,
    Offer,
    OfferStatus,
    OfferSummary,
    PostingMode,
    SkipReason,
    SkippedTarget,
    Slot,
)

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "Blogger",
    "Channel",
    "CreateOffersResult",
    "DeliveryHandle",
    "NotifyKind",
    "Offer",
    "OfferStatus",
    "OfferSummary",
    "PostingMode",
    "SkipReason",
    "SkippedTarget",
    "Slot",
]
