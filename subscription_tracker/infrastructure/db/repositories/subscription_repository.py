"""
Subscription Repository

Data access layer for subscriptions and their owners.
Follows Repository pattern for Clean Architecture.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlmodel import select

from subscription_tracker.infrastructure.db.database import SessionFactory, get_session_context
from subscription_tracker.infrastructure.db.models import SubscriptionModel, UserModel, utc_now
from subscription_tracker.domain.subscription import (
    Category,
    Currency,
    Frequency,
    Subscription,
    SubscriptionOwner,
    SubscriptionStatus,
    calculate_renewal_date,
    ensure_utc,
    resolve_status,
)
from subscription_tracker.infrastructure.exceptions import (
    DataIntegrityError,
    DuplicateError,
    NotFoundError,
)


logger = logging.getLogger(__name__)


def parse_uuid(value) -> Optional[UUID]:
    """Parse an identifier, returning None when it is not a UUID."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class UserRepository:
    """Repository for subscription owners (contact identity only)."""

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def create(self, name: str, email: str) -> SubscriptionOwner:
        """
        Create a new user.

        Raises:
            DuplicateError: email already registered
        """
        email = email.strip().lower()
        async with self._session_factory() as session:
            existing = await session.execute(select(UserModel).where(UserModel.email == email))
            if existing.scalar_one_or_none():
                raise DuplicateError(
                    f"User with email {email} already exists",
                    operation="create",
                    table="users",
                )

            model = UserModel(name=name.strip(), email=email)
            session.add(model)
            await session.commit()
            await session.refresh(model)

            logger.info(f"Created user {model.id}")
            return self._to_domain(model)

    async def get_by_id(self, user_id: str) -> Optional[SubscriptionOwner]:
        user_uuid = parse_uuid(user_id)
        if user_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(UserModel, user_uuid)
            return self._to_domain(model) if model else None

    def _to_domain(self, model: UserModel) -> SubscriptionOwner:
        return SubscriptionOwner(id=str(model.id), name=model.name, email=model.email)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Implements the read side consumed by the reminder workflow plus the
    writes needed to create records and keep their status current.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """
        Get subscription by ID, with the owner's contact identity attached.

        Args:
            subscription_id: Subscription UUID

        Returns:
            Subscription domain model or None
        """
        subscription_uuid = parse_uuid(subscription_id)
        if subscription_uuid is None:
            return None

        async with self._session_factory() as session:
            statement = (
                select(SubscriptionModel, UserModel)
                .join(UserModel, UserModel.id == SubscriptionModel.user_id, isouter=True)
                .where(SubscriptionModel.id == subscription_uuid)
            )
            result = await session.execute(statement)
            row = result.first()

            if row is None:
                return None

            model, user = row
            return self._to_domain(model, user)

    async def get_owner_contact(self, user_id: str) -> Optional[SubscriptionOwner]:
        """Get the contact identity of a subscription owner."""
        return await UserRepository(self._session_factory).get_by_id(user_id)

    async def list_remindable(self, now: datetime, limit: int = 1000) -> List[Subscription]:
        """
        Active subscriptions whose renewal date is still ahead.

        Used to (re)start reminder runs in bulk.
        """
        async with self._session_factory() as session:
            statement = (
                select(SubscriptionModel)
                .where(SubscriptionModel.status == SubscriptionStatus.ACTIVE.value)
                .where(SubscriptionModel.renewal_date > now)
                .order_by(SubscriptionModel.renewal_date)
                .limit(limit)
            )
            result = await session.execute(statement)
            return [self._to_domain(model) for model in result.scalars().all()]

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(
        self,
        user_id: str,
        name: str,
        price: Decimal,
        payment_method: str,
        start_date: datetime,
        currency: Currency = Currency.USD,
        frequency: Frequency = Frequency.MONTHLY,
        category: Category = Category.OTHER,
        renewal_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Create a new subscription.

        The renewal date defaults to start date plus one billing period, and a
        subscription created with a renewal date already in the past is stored
        as expired.

        Raises:
            NotFoundError: owner does not exist
        """
        user_uuid = parse_uuid(user_id)
        if renewal_date is None:
            renewal_date = calculate_renewal_date(start_date, frequency)
        status = resolve_status(renewal_date, now or utc_now())

        async with self._session_factory() as session:
            owner = await session.get(UserModel, user_uuid) if user_uuid else None
            if owner is None:
                raise NotFoundError(
                    f"User {user_id} not found",
                    operation="create",
                    table="users",
                )

            model = SubscriptionModel(
                user_id=user_uuid,
                name=name.strip(),
                price=price,
                currency=Currency(currency).value,
                frequency=Frequency(frequency).value,
                category=Category(category).value,
                payment_method=payment_method.strip(),
                status=status.value,
                start_date=ensure_utc(start_date),
                renewal_date=ensure_utc(renewal_date),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)

            logger.info(f"Created subscription {model.id} for user {user_id}")
            return self._to_domain(model, owner)

    async def update_status(self, subscription_id: str, status: SubscriptionStatus) -> Subscription:
        """
        Change the status of a subscription.

        Raises:
            NotFoundError: subscription does not exist
        """
        subscription_uuid = parse_uuid(subscription_id)
        async with self._session_factory() as session:
            model = await session.get(SubscriptionModel, subscription_uuid) if subscription_uuid else None
            if model is None:
                raise NotFoundError(
                    f"Subscription {subscription_id} not found",
                    operation="update_status",
                    table="subscriptions",
                )

            model.status = SubscriptionStatus(status).value
            model.updated_at = utc_now()
            await session.commit()
            await session.refresh(model)

            logger.info(f"Subscription {subscription_id} is now {model.status}")
            return self._to_domain(model)

    async def expire_lapsed(self, now: datetime) -> int:
        """
        Mark active subscriptions whose renewal date has passed as expired.

        Returns:
            Number of subscriptions expired
        """
        async with self._session_factory() as session:
            statement = (
                update(SubscriptionModel)
                .where(SubscriptionModel.status == SubscriptionStatus.ACTIVE.value)
                .where(SubscriptionModel.renewal_date < now)
                .values(status=SubscriptionStatus.EXPIRED.value, updated_at=utc_now())
            )
            result = await session.execute(statement)
            await session.commit()

            count = result.rowcount or 0
            logger.info(f"Expired {count} lapsed subscriptions")
            return count

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(
        self,
        model: SubscriptionModel,
        user: Optional[UserModel] = None,
    ) -> Subscription:
        """Convert database model to domain entity."""
        try:
            return Subscription(
                id=str(model.id),
                name=model.name,
                price=model.price,
                currency=Currency(model.currency),
                frequency=Frequency(model.frequency),
                category=Category(model.category),
                payment_method=model.payment_method,
                status=SubscriptionStatus(model.status),
                start_date=ensure_utc(model.start_date),
                renewal_date=ensure_utc(model.renewal_date) if model.renewal_date else None,
                user_id=str(model.user_id),
                owner=(
                    SubscriptionOwner(id=str(user.id), name=user.name, email=user.email)
                    if user else None
                ),
                created_at=model.created_at,
                updated_at=model.updated_at,
            )
        except (PydanticValidationError, ValueError) as e:
            raise DataIntegrityError(
                f"Subscription {model.id} has invalid stored data",
                original_error=e,
            )


# =============================================================================
# Singleton Instance
# =============================================================================

_subscription_repo_instance: Optional[SubscriptionRepository] = None


def get_subscription_repository() -> SubscriptionRepository:
    """Get or create subscription repository singleton."""
    global _subscription_repo_instance

    if _subscription_repo_instance is None:
        _subscription_repo_instance = SubscriptionRepository()

    return _subscription_repo_instance
