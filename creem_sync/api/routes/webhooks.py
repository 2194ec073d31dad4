"""Creem webhook endpoint.

POST /api/webhooks/creem: verify, apply, then acknowledge. Failures return a
non-2xx status so Creem's own retry schedule redelivers the event.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from creem_sync.core.exceptions import (
    CustomerNotFoundError,
    DataStoreError,
    InsufficientCreditsError,
    MalformedPayloadError,
    MissingMetadataError,
    SignatureInvalidError,
)
from creem_sync.services.webhook_service import WebhookService
from creem_sync.webhooks.signature import SIGNATURE_HEADER

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_webhook_service(request: Request) -> WebhookService:
    """Return the service built at startup; 503 if the secret was never configured."""
    service = getattr(request.app.state, "webhook_service", None)
    if service is None:
        logger.error("creem_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Creem webhook endpoint is not configured")
    return service


@router.post("/webhooks/creem")
async def creem_webhook(request: Request, service: WebhookService = Depends(get_webhook_service)):
    """Handle a Creem webhook delivery with signature verification."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not signature:
        raise HTTPException(status_code=401, detail=f"Missing {SIGNATURE_HEADER} header")

    try:
        await service.process(body, signature)
    except SignatureInvalidError:
        raise HTTPException(status_code=401, detail="Invalid signature")
    except MalformedPayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (MissingMetadataError, InsufficientCreditsError, CustomerNotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DataStoreError:
        raise HTTPException(status_code=500, detail="Failed to apply webhook event")

    return {"received": True}
