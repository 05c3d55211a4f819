# payrec/integrations/stripe.py

"""
Stripe webhook integration.

Verifies webhook signatures and turns succeeded charges / payment intents
into import rows. The Stripe object id is the provider payment id, so a
redelivered webhook is skipped by the importer's idempotency key.
"""

import logging
from decimal import Decimal
from typing import Any, Optional
import stripe

from payrec.config import get_settings
from payrec.core.normalizers import build_payer_raw
from payrec.models import RawPaymentRow

settings = get_settings()
logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.stripe_secret_key

PAYMENT_EVENTS = {"charge.succeeded", "payment_intent.succeeded"}

# Currencies Stripe expresses without minor units
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}


def construct_event(payload: bytes, signature: str) -> Any:
    """
    Verify and parse a webhook payload.

    Raises:
        ValueError: payload is not valid JSON
        stripe.SignatureVerificationError: signature does not match the secret
    """
    return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _amount(obj: Any) -> Optional[Decimal]:
    amount = _get(obj, "amount_received", _get(obj, "amount"))
    if amount is None:
        return None

    currency = str(_get(obj, "currency", "")).lower()
    if currency in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return Decimal(amount) / 100


def _payment_id(obj: Any) -> Optional[str]:
    # A charge and its payment intent describe the same payment
    intent = _get(obj, "payment_intent")
    if isinstance(intent, str) and intent:
        return intent
    return _get(obj, "id")


def _payer(obj: Any) -> str:
    metadata = _get(obj, "metadata", {})
    billing = _get(obj, "billing_details", {})
    return (
        _get(metadata, "payer")
        or _get(billing, "name")
        or build_payer_raw(_get(metadata, "payer_first_name"), _get(metadata, "payer_last_name"))
        or _get(obj, "receipt_email")
        or _get(billing, "email")
        or ""
    )


def event_to_row(event: Any) -> Optional[tuple[str, RawPaymentRow]]:
    """
    Map a payment event to (school_id, row).

    Returns None for events that do not record a payment, or that carry no
    school id in their metadata.
    """
    event_type = _get(event, "type")
    if event_type not in PAYMENT_EVENTS:
        logger.info(f"Ignoring Stripe event {_get(event, 'id')} of type {event_type}")
        return None

    obj = _get(_get(event, "data", {}), "object", {})
    metadata = _get(obj, "metadata", {})

    school_id = _get(metadata, settings.stripe_school_id_metadata_key)
    if not school_id:
        logger.warning(f"Stripe event {_get(event, 'id')} has no school id in metadata")
        return None

    row = RawPaymentRow(
        payer_raw=_payer(obj),
        amount=_amount(obj),
        currency=str(_get(obj, "currency", "")).upper() or None,
        period=_get(metadata, "period"),
        provider="stripe",
        provider_payment_id=_payment_id(obj),
        reference=_get(obj, "description"),
        paid_at=_get(obj, "created"),
        status="approved",
        target_type="player" if _get(metadata, "target_type") == "player" else "account",
        account_raw=_get(metadata, "account"),
    )
    return str(school_id), row
