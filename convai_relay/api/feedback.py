"""Conversation feedback submission"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from convai_relay.exceptions import NotFoundError, PersistenceError
from convai_relay.schemas.feedback import FeedbackCreate, FeedbackResponse
from convai_relay.services.ledger import ConversationLedger, get_ledger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["feedback"])


@router.post(
    "/{conversation_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_feedback(
    conversation_id: int,
    payload: FeedbackCreate,
    ledger: ConversationLedger = Depends(get_ledger),
):
    """Rate a finished conversation; the text is labelled with its sentiment mood."""
    try:
        return await ledger.record_feedback(
            conversation_id,
            rating=payload.rating,
            feedback=payload.feedback,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Feedback not stored: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store feedback",
        )
