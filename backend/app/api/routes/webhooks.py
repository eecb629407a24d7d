"""
Payment Gateway Webhook Handler

Receives signed gateway events and hands them to the reconciler.
Implements idempotent event processing backed by the database (survives restarts).

Response contract:
- 400 when the signature header is missing or does not match the body
- 200 for everything else, including processing errors, so the gateway does
  not redeliver endlessly; errors are logged and recorded in webhook_events
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.api.dependencies import WebhookServiceDep
from app.domain.gateway_events import parse_gateway_event
from app.infrastructure.exceptions import InvalidSignatureError


logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"


@router.post("/webhooks/payment-gateway")
async def payment_gateway_webhook(request: Request, service: WebhookServiceDep):
    """
    Handle payment gateway webhook events.

    Verifies the body signature, skips deliveries already processed, then
    applies the event. Returns 200 OK to acknowledge receipt.
    """
    # Get raw payload and signature
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing webhook signature",
        )

    try:
        service.verify_signature(payload, signature)
    except InvalidSignatureError:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = parse_gateway_event(payload, request.headers.get(EVENT_ID_HEADER))
    except ValueError as e:
        logger.error(f"Signed webhook body could not be parsed: {e}")
        return {"status": "error", "message": "Malformed payload"}

    # Idempotency check
    if await service.is_event_processed(event.event_id):
        logger.info(f"Event {event.event_id} already processed, skipping")
        return {"status": "already_processed"}

    logger.info(f"Processing webhook event: {event.raw_type} ({event.event_id})")

    try:
        outcome = await service.process(event)
        await service.record_event(event.event_id, event.raw_type, outcome)
    except Exception as e:
        # Return 200 so the gateway does not redeliver; the failure is logged and recorded
        logger.exception(f"Error processing webhook {event.raw_type}: {e}")
        await service.record_failure(event, e)
        return {"status": "error", "message": "Event could not be processed"}

    return {"status": outcome.value}
