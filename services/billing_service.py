"""
Billing Service - Stripe checkout, direct-charge subscriptions and webhook upgrades
"""

import logging
from typing import Optional

import stripe

from config.settings import settings, DEFAULT_APP_URL
from crud.subscription import SubscriptionRepository
from models.checkout import CardDetails
from models.subscription import PlanType, SubscriptionStatus

logger = logging.getLogger(__name__)

GENERIC_PAYMENT_ERROR = "Payment processing failed. Please try again."
PAYMENT_UNAVAILABLE = "Payment processing is currently unavailable. Please contact support."

ALREADY_SUBSCRIBED = "Subscription already active"

# Subscription states in which the first invoice has been paid (or needs no payment)
PAID_SUBSCRIPTION_STATUSES = {"active", "trialing"}

ENTERPRISE_PRICE_DATA = {
    "currency": "usd",
    "product_data": {
        "name": "Enterprise Plan",
        "description": "Full access to all features",
    },
    "recurring": {"interval": "month"},
    "unit_amount": 29900,
}


class CheckoutConfigurationError(Exception):
    """Stripe is not configured; payments cannot be taken."""


class CheckoutError(Exception):
    """Stripe rejected the request; message is safe to show the user."""


class AlreadySubscribedError(CheckoutError):
    """The user already has an active enterprise subscription."""


class ReconciliationRequiredError(Exception):
    """
    Payment succeeded but the upgrade could not be recorded.
    Needs manual follow-up.
    """

    def __init__(self, user_id: str, customer_id: str, subscription_id: str,
                 payment_method_id: Optional[str], reason: str):
        super().__init__(
            f"Upgrade not recorded for user {user_id}: {reason} "
            f"(customer={customer_id}, subscription={subscription_id}, payment_method={payment_method_id})"
        )
        self.user_id = user_id
        self.customer_id = customer_id
        self.subscription_id = subscription_id
        self.payment_method_id = payment_method_id


def _stripe_field(obj, key: str):
    if obj is None:
        return None
    return obj.get(key) if hasattr(obj, "get") else getattr(obj, key, None)


def _stripe_id(obj, key: str) -> Optional[str]:
    """Read an id-valued field; expanded objects yield their own id."""
    value = _stripe_field(obj, key)
    if value is not None and not isinstance(value, str):
        return _stripe_field(value, "id")
    return value


class BillingService:
    """
    Service class for turning a payment into a persisted enterprise upgrade.
    """

    def __init__(self, repo: SubscriptionRepository):
        """
        Initialize the billing service.

        Args:
            repo: SubscriptionRepository used to record upgrades
        """
        self.repo = repo

    def _require_stripe(self) -> None:
        if not settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot process payments.")
            raise CheckoutConfigurationError(PAYMENT_UNAVAILABLE)
        stripe.api_key = settings.stripe_secret_key

    def _resolve_customer(self, user_id: str, email: str) -> str:
        """Return the id of the Stripe customer with this email, creating it if needed."""
        customers = stripe.Customer.list(email=email, limit=1)
        if customers.data:
            return customers.data[0].id
        customer = stripe.Customer.create(email=email, metadata={"user_id": user_id})
        logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def _ensure_not_subscribed(self, record) -> None:
        if (
            record is not None
            and record.plan_type == PlanType.ENTERPRISE.value
            and record.subscription_status == SubscriptionStatus.ACTIVE.value
        ):
            logger.warning(
                f"Checkout refused for user {record.user_id}: already on enterprise "
                f"(subscription {record.stripe_subscription_id})"
            )
            raise AlreadySubscribedError(ALREADY_SUBSCRIBED)

    async def _record_upgrade(self, user_id: str, customer_id: str, subscription_id: str,
                              payment_method_id: Optional[str]):
        result = await self.repo.upgrade_to_enterprise(
            user_id, customer_id, subscription_id, payment_method_id
        )
        if result.found:
            return result.record

        reason = result.error or result.outcome.value
        logger.critical(
            "RECONCILIATION REQUIRED: payment captured but enterprise upgrade not recorded "
            f"user={user_id} customer={customer_id} subscription={subscription_id} "
            f"payment_method={payment_method_id} reason={reason}"
        )
        raise ReconciliationRequiredError(user_id, customer_id, subscription_id, payment_method_id, reason)

    async def create_checkout_session(self, user_id: str, email: str, origin: Optional[str] = None) -> dict:
        """
        Create a hosted Stripe Checkout session for the enterprise plan.
        The upgrade itself is recorded when the checkout.session.completed
        webhook arrives.

        Args:
            user_id: Identity-provider user id
            email: Email used to find or create the Stripe customer
            origin: Request Origin header, used when APP_URL is not configured

        Returns:
            {"success": True, "sessionId": ..., "checkoutUrl": ...}

        Raises:
            CheckoutConfigurationError: Stripe is not configured
            AlreadySubscribedError: The user is already on the enterprise plan
            CheckoutError: Stripe rejected the request
        """
        self._require_stripe()

        existing = await self.repo.get_by_user(user_id)
        if existing.found:
            self._ensure_not_subscribed(existing.record)

        try:
            customer_id = self._resolve_customer(user_id, email)

            app_url = (settings.app_url or origin or DEFAULT_APP_URL).rstrip("/")
            if settings.stripe_price_id:
                line_item = {"price": settings.stripe_price_id, "quantity": 1}
            else:
                line_item = {"price_data": ENTERPRISE_PRICE_DATA, "quantity": 1}

            checkout_session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[line_item],
                mode="subscription",
                success_url=f"{app_url}/dashboard?payment=success",
                cancel_url=f"{app_url}/upgrade?payment=canceled",
                client_reference_id=user_id,
                metadata={"user_id": user_id},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session for user {user_id}: {e}", exc_info=True)
            raise CheckoutError(GENERIC_PAYMENT_ERROR) from e

        logger.info(f"Created checkout session {checkout_session.id} for user {user_id}")
        return {
            "success": True,
            "sessionId": checkout_session.id,
            "checkoutUrl": checkout_session.url,
        }

    async def create_direct_subscription(self, user_id: str, email: str, card: CardDetails) -> dict:
        """
        Charge a card server-side and upgrade the user synchronously.

        Args:
            user_id: Identity-provider user id
            email: Email used to find or create the Stripe customer
            card: Parsed card details

        Returns:
            {"success": True, "subscriptionId": ...}

        Raises:
            CheckoutConfigurationError: Stripe or the price is not configured,
                or the subscription store is unreachable before charging
            AlreadySubscribedError: The user is already on the enterprise plan
            CheckoutError: Stripe rejected the card or the request
            ReconciliationRequiredError: Charged, but the upgrade was not recorded
        """
        self._require_stripe()
        if not settings.stripe_price_id:
            logger.error("STRIPE_PRICE_ID is not set. Cannot create subscription.")
            raise CheckoutConfigurationError(PAYMENT_UNAVAILABLE)

        # Make sure there is a record to upgrade before any money moves
        existing = await self.repo.create_trial(user_id)
        if not existing.found:
            logger.error(f"Subscription store unavailable for user {user_id}; not charging: {existing.error}")
            raise CheckoutConfigurationError(PAYMENT_UNAVAILABLE)
        self._ensure_not_subscribed(existing.record)

        try:
            customer_id = self._resolve_customer(user_id, email)

            payment_method = stripe.PaymentMethod.create(
                type="card",
                card={
                    "number": card.number,
                    "exp_month": card.exp_month,
                    "exp_year": card.exp_year,
                    "cvc": card.cvc,
                },
            )
            stripe.PaymentMethod.attach(payment_method.id, customer=customer_id)
            stripe.Customer.modify(
                customer_id,
                invoice_settings={"default_payment_method": payment_method.id},
            )

            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": settings.stripe_price_id}],
                default_payment_method=payment_method.id,
                payment_behavior="error_if_incomplete",
                metadata={"user_id": user_id},
            )
            subscription_status = _stripe_field(subscription, "status")
            if subscription_status not in PAID_SUBSCRIPTION_STATUSES:
                logger.warning(
                    f"Subscription {subscription.id} for user {user_id} is {subscription_status}; cancelling"
                )
                stripe.Subscription.cancel(subscription.id)
                raise CheckoutError(GENERIC_PAYMENT_ERROR)
        except stripe.CardError as e:
            logger.warning(f"Card declined for user {user_id}: {e}")
            raise CheckoutError(e.user_message or GENERIC_PAYMENT_ERROR) from e
        except stripe.StripeError as e:
            logger.error(f"Direct subscription failed for user {user_id}: {e}", exc_info=True)
            raise CheckoutError(GENERIC_PAYMENT_ERROR) from e

        await self._record_upgrade(user_id, customer_id, subscription.id, payment_method.id)
        return {"success": True, "subscriptionId": subscription.id}

    def _resolve_payment_method(self, subscription, customer_id: str) -> Optional[str]:
        """Subscription default, then customer default, then the first attached card."""
        payment_method_id = _stripe_id(subscription, "default_payment_method")
        if payment_method_id:
            return payment_method_id

        customer = stripe.Customer.retrieve(customer_id)
        invoice_settings = _stripe_field(customer, "invoice_settings")
        payment_method_id = _stripe_id(invoice_settings, "default_payment_method")
        if payment_method_id:
            return payment_method_id

        methods = stripe.PaymentMethod.list(customer=customer_id, type="card", limit=1)
        if methods.data:
            return methods.data[0].id
        return None

    async def process_webhook(self, event) -> dict:
        """
        Process a verified Stripe webhook event.

        checkout.session.completed upgrades the referenced user; every other
        event type is acknowledged without action.

        Args:
            event: Verified Stripe Event object

        Returns:
            {"handled": bool, "event_type": str}

        Raises:
            ReconciliationRequiredError: Paid session whose upgrade could not be recorded
        """
        event_type = event["type"]
        logger.info(f"Processing Stripe webhook event: {event_type}")

        if event_type != "checkout.session.completed":
            return {"handled": False, "event_type": event_type}

        session = event["data"]["object"]
        metadata = _stripe_field(session, "metadata") or {}
        user_id = _stripe_id(session, "client_reference_id") or _stripe_id(metadata, "user_id")
        customer_id = _stripe_id(session, "customer")
        subscription_id = _stripe_id(session, "subscription")

        if not (user_id and customer_id and subscription_id):
            logger.error(
                f"checkout.session.completed {_stripe_id(session, 'id')} missing references "
                f"(user={user_id}, customer={customer_id}, subscription={subscription_id})"
            )
            return {"handled": False, "event_type": event_type}

        # Stripe redelivers events; an upgrade already recorded is acknowledged as is
        recorded = await self.repo.get_by_stripe_subscription(subscription_id)
        if recorded.found and recorded.record.user_id == user_id:
            logger.info(f"Subscription {subscription_id} already recorded for user {user_id}")
            return {"handled": True, "event_type": event_type}

        self._require_stripe()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            payment_method_id = self._resolve_payment_method(subscription, customer_id)
        except stripe.StripeError as e:
            logger.error(f"Could not load subscription {subscription_id}: {e}", exc_info=True)
            payment_method_id = None

        # Users who paid before their first session have no record yet
        await self.repo.create_trial(user_id)
        await self._record_upgrade(user_id, customer_id, subscription_id, payment_method_id)
        return {"handled": True, "event_type": event_type}
