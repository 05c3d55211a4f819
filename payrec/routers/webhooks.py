# payrec/routers/webhooks.py

"""
Payment provider webhooks.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from payrec.core import BatchImporter
from payrec.dependencies import get_importer
from payrec.integrations import stripe as stripe_integration

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    importer: BatchImporter = Depends(get_importer),
):
    """
    Record a succeeded Stripe payment.

    Redelivered events are skipped by the payment's idempotency key.
    """
    payload = await request.body()

    try:
        event = stripe_integration.construct_event(payload, stripe_signature)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook with an invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    mapped = stripe_integration.event_to_row(event)
    if mapped is None:
        return {"success": True, "ignored": True}

    school_id, row = mapped
    result = await run_in_threadpool(importer.import_batch, school_id, [row], None, "stripe")

    return {
        "success": True,
        "ignored": False,
        "batch_id": result.batch.id,
        "payment_ids": [p.id for p in result.payments],
        "skipped": [s.model_dump(mode="json") for s in result.skipped],
    }
