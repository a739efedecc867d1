"""
Payment domain events.

Dataclass events record settlement facts for downstream handling
(e.g., revenue projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    order_id: str
    store_id: str
    gateway: str
    provider_ref: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentSettled(PaymentEvent):
    transaction_id: str = ""
    amount: str = ""


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class PaymentCancelled(PaymentEvent):
    pass
