"""
Subscription Domain Models

Domain models for subscription tracking following Clean Architecture.
Enums, domain entities and lifecycle rules for the subscription bounded context.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Currency(str, Enum):
    """Supported subscription currencies."""
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class Frequency(str, Enum):
    """How often a subscription is billed."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Category(str, Enum):
    """Subscription categories."""
    SPORTS = "sports"
    NEWS = "news"
    ENTERTAINMENT = "entertainment"
    LIFESTYLE = "lifestyle"
    TECHNOLOGY = "technology"
    FINANCE = "finance"
    POLITICS = "politics"
    OTHER = "other"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Renewal period per billing frequency
RENEWAL_PERIODS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=30),
    Frequency.YEARLY: timedelta(days=365),
}


# =============================================================================
# Domain Entities
# =============================================================================

class SubscriptionOwner(BaseModel):
    """Contact identity of the user who owns a subscription."""
    id: str
    name: str
    email: str

    model_config = ConfigDict(from_attributes=True)


class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[str] = None
    name: str
    price: Decimal = Field(ge=0)
    currency: Currency = Currency.USD
    frequency: Frequency = Frequency.MONTHLY
    category: Category = Category.OTHER
    payment_method: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime
    renewal_date: Optional[datetime] = None
    user_id: str
    owner: Optional[SubscriptionOwner] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


# =============================================================================
# Lifecycle Rules (Business Logic)
# =============================================================================

def ensure_utc(value: datetime) -> datetime:
    """Interpret naive timestamps as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def calculate_renewal_date(start_date: datetime, frequency: Frequency) -> datetime:
    """Renewal date implied by the start date and billing frequency."""
    return ensure_utc(start_date) + RENEWAL_PERIODS[Frequency(frequency)]


def resolve_status(
    renewal_date: datetime,
    now: datetime,
    current: SubscriptionStatus = SubscriptionStatus.ACTIVE,
) -> SubscriptionStatus:
    """An active subscription whose renewal date has passed is expired."""
    if current == SubscriptionStatus.ACTIVE and ensure_utc(renewal_date) < ensure_utc(now):
        return SubscriptionStatus.EXPIRED
    return current
