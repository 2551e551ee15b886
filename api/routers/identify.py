"""
Identity Reconciliation API - Identify Router
============================================
POST /identify: link an email and/or phone number into the identity graph
and return the consolidated contact.
"""

import logging
from fastapi import APIRouter, Depends, Request

from api.deps import get_engine
from api.schemas import IdentifyRequest, IdentifyResponse
from reconcile.linking.engine import ContactLinkingEngine

router = APIRouter(tags=["Identify"])
logger = logging.getLogger(__name__)


@router.post("/identify", response_model=IdentifyResponse)
@router.post("/api/v1/identify", response_model=IdentifyResponse)
def identify(
    payload: IdentifyRequest,
    request: Request,
    engine: ContactLinkingEngine = Depends(get_engine)
):
    """
    Identify a customer from an email and/or phone number.

    Returns the primary contact id, every known email and phone number
    (primary's first) and the ids of all secondary contacts.
    """
    correlation_id = request.headers.get('x-correlation-id', 'unknown')
    logger.info(
        f"Identify request [{correlation_id}]: "
        f"email={'yes' if payload.email else 'no'} phone={'yes' if payload.phoneNumber else 'no'}"
    )

    # Domain errors propagate to the exception handlers in api.main
    view = engine.identify(payload.to_observation())

    logger.info(
        f"Identify request [{correlation_id}] resolved to primary {view.primary_contact_id} "
        f"({len(view.secondary_contact_ids)} secondaries)"
    )
    return IdentifyResponse.from_view(view)
