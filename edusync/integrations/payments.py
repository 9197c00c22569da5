"""
Mentor Payments — Stripe checkout for a paid mentoring session.

Behavioral Contract:
- The Stripe customer is looked up by email and created when missing
- One checkout session per call: a single USD line item, amount in cents
- A pending 60-minute booking row is written after the session is created.
  The booking is not reconciled with payment completion here.
"""

from datetime import datetime
from typing import Optional

import stripe
import structlog

from edusync.errors import ConfigurationError, ValidationError
from edusync.models.identity import UserIdentity
from edusync.models.integrations import CheckoutSession
from edusync.store.catalog import CatalogStore

logger = structlog.get_logger(__name__)

SESSION_MINUTES = 60
PRODUCT_NAME = "Mentoring Session"


def parse_scheduled_at(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid scheduledAt: {value}")


class MentorPayments:
    def __init__(
        self,
        catalog: CatalogStore,
        api_key: Optional[str],
        api_version: str = "2023-10-16",
    ):
        self.catalog = catalog
        self.api_key = api_key
        self.api_version = api_version

    def _request_options(self) -> dict:
        return {"api_key": self.api_key, "stripe_version": self.api_version}

    def _customer_id(self, user: UserIdentity, email: Optional[str]) -> str:
        customers = stripe.Customer.list(email=email, limit=1, **self._request_options())
        if customers.data:
            return customers.data[0].id
        customer = stripe.Customer.create(
            email=email,
            metadata={"supabase_user_id": user.id},
            **self._request_options(),
        )
        logger.info("stripe_customer_created", user_id=user.id)
        return customer.id

    def create_checkout(
        self,
        user: UserIdentity,
        mentor_id: Optional[str],
        amount,
        scheduled_at: Optional[str],
        time_zone: Optional[str],
        origin: str,
    ) -> CheckoutSession:
        if not self.api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY not configured")
        if not mentor_id or amount is None or not scheduled_at:
            raise ValidationError("mentorId, amount and scheduledAt are required")
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            raise ValidationError("amount must be a number")
        when = parse_scheduled_at(scheduled_at)

        profile = self.catalog.get_profile(user.id) or {}
        email = profile.get("email") or user.email
        customer_id = self._customer_id(user, email)

        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": "usd",
                    "product_data": {
                        "name": PRODUCT_NAME,
                        "description": (
                            f"1 hour mentoring session on {scheduled_at} ({time_zone})"
                        ),
                    },
                    "unit_amount": round(amount * 100),
                },
                "quantity": 1,
            }],
            mode="payment",
            success_url=f"{origin}/mentor-sessions?success=true",
            cancel_url=f"{origin}/mentor-marketplace?canceled=true",
            metadata={
                "mentor_id": mentor_id,
                "student_id": user.id,
                "scheduled_at": scheduled_at,
                "time_zone": time_zone or "",
            },
            **self._request_options(),
        )

        booking = self.catalog.create_booking(
            mentor_id=mentor_id,
            student_id=user.id,
            scheduled_at=when,
            price=amount,
            duration_minutes=SESSION_MINUTES,
            status="pending",
        )
        logger.info(
            "mentor_checkout_created",
            user_id=user.id, mentor_id=mentor_id, booking_id=booking["id"],
        )
        return CheckoutSession(url=session.url, session_id=session.id, customer_id=customer_id)
