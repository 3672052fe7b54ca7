"""
Subscription Database Models

SQLModel tables for subscription owners and their subscriptions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from subscription_tracker.infrastructure.db.models.base import BaseModel


class UserModel(BaseModel, table=True):
    """
    Owner of subscriptions. Only the contact identity is stored here;
    credentials live with the authentication service.

    Maps to the 'users' table.
    """

    __tablename__ = "users"

    name: str = Field(min_length=2, max_length=50)
    email: str = Field(max_length=255, unique=True, index=True)


class SubscriptionModel(BaseModel, table=True):
    """
    Subscription table for tracked recurring payments.

    Maps to the 'subscriptions' table.
    """

    __tablename__ = "subscriptions"

    user_id: UUID = Field(foreign_key="users.id", index=True, nullable=False)

    # Subscription details
    name: str = Field(min_length=2, max_length=100)
    price: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    frequency: str = Field(default="monthly", max_length=20)
    category: str = Field(default="other", max_length=30)
    payment_method: str = Field(max_length=100)
    status: str = Field(default="active", max_length=20, index=True)

    # Billing dates
    start_date: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    renewal_date: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),
        index=True,
    )
