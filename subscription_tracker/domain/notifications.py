"""
Reminder Notification Templates

Renders the renewal reminder for a subscription snapshot and milestone.
Deterministic string templating only; delivery lives in infrastructure.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from html import escape
from typing import Optional

from subscription_tracker.domain.reminders import Milestone, resolve_timestamp
from subscription_tracker.domain.subscription import Currency, Subscription
from subscription_tracker.infrastructure.exceptions import DataIntegrityError


CURRENCY_SYMBOLS = {
    Currency.USD: "$",
    Currency.EUR: "€",
    Currency.GBP: "£",
}


@dataclass(frozen=True)
class RenderedMessage:
    """Rendered reminder ready for a notification sender."""
    subject: str
    body: str
    html: str


def format_price(price, currency) -> str:
    """Format a price with its currency symbol and code, e.g. ``$15.99 USD``."""
    try:
        amount = Decimal(str(price)).quantize(Decimal("0.01"))
        code = Currency(currency)
    except (InvalidOperation, ValueError) as e:
        raise DataIntegrityError(
            f"Cannot format price {price!r} {currency!r}",
            field="price",
            original_error=e,
        )
    return f"{CURRENCY_SYMBOLS[code]}{amount:,} {code.value}"


def format_renewal_date(renewal_date) -> str:
    """Human readable renewal date, e.g. ``March 05, 2026``."""
    return resolve_timestamp(renewal_date, "renewal_date").strftime("%B %d, %Y")


def days_phrase(days: int) -> str:
    """Days-remaining phrase used in subjects and bodies."""
    if days <= 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _subject(name: str, days: int) -> str:
    if days == 1:
        return f"⚡ Final Reminder: {name} Renews Tomorrow!"
    return f"📅 Reminder: Your {name} Subscription Renews in {days} Days!"


def _require(subscription: Subscription) -> None:
    """Fail fast on snapshots missing what the template needs."""
    if not subscription.name:
        raise DataIntegrityError("Subscription has no name", field="name")
    if subscription.price is None:
        raise DataIntegrityError("Subscription has no price", field="price")
    if subscription.renewal_date is None:
        raise DataIntegrityError("Subscription has no renewal date", field="renewal_date")
    if subscription.owner is None or not subscription.owner.email:
        raise DataIntegrityError("Subscription owner has no contact email", field="owner.email")


def render_reminder(
    subscription: Subscription,
    milestone: Milestone,
    account_url: str,
    support_url: Optional[str] = None,
) -> RenderedMessage:
    """
    Render the reminder email for one milestone.

    Args:
        subscription: Snapshot including the owner's contact identity
        milestone: Milestone being notified
        account_url: Link where the user manages the subscription
        support_url: Optional help link

    Returns:
        RenderedMessage with subject, plain-text body and HTML body

    Raises:
        DataIntegrityError: required subscription fields are missing
    """
    _require(subscription)

    owner_name = subscription.owner.name or "there"
    renews_on = format_renewal_date(subscription.renewal_date)
    price = format_price(subscription.price, subscription.currency)
    plan = f"{price} ({subscription.frequency.value})"
    remaining = days_phrase(milestone.days)

    body_lines = [
        f"Hello {owner_name},",
        "",
        f"Your {subscription.name} subscription is set to renew on {renews_on} ({remaining}).",
        "",
        f"Plan: {subscription.name}",
        f"Price: {plan}",
        f"Payment Method: {subscription.payment_method}",
        "",
        "If you'd like to make changes or cancel your subscription, visit your account settings:",
        account_url,
    ]
    if support_url:
        body_lines += ["", f"Need help? Contact our support team: {support_url}"]

    help_html = ""
    if support_url:
        help_html = (
            f'<p>Need help? <a href="{escape(support_url)}">Contact our support team</a>.</p>'
        )

    html = (
        "<div style=\"font-family: Arial, sans-serif; line-height: 1.6; color: #333;\">"
        f"<p>Hello <strong>{escape(owner_name)}</strong>,</p>"
        f"<p>Your <strong>{escape(subscription.name)}</strong> subscription is set to renew on "
        f"<strong>{escape(renews_on)}</strong> ({escape(remaining)}).</p>"
        "<table cellpadding=\"8\" style=\"border-collapse: collapse;\">"
        f"<tr><td><strong>Plan</strong></td><td>{escape(subscription.name)}</td></tr>"
        f"<tr><td><strong>Price</strong></td><td>{escape(plan)}</td></tr>"
        f"<tr><td><strong>Payment Method</strong></td><td>{escape(subscription.payment_method)}</td></tr>"
        "</table>"
        f"<p>If you'd like to make changes or cancel your subscription, visit your "
        f"<a href=\"{escape(account_url)}\">account settings</a>.</p>"
        f"{help_html}"
        "</div>"
    )

    return RenderedMessage(
        subject=_subject(subscription.name, milestone.days),
        body="\n".join(body_lines),
        html=html,
    )
