"""Analytics dashboard endpoints"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.config import get_settings
from convai_relay.database import get_db
from convai_relay.exceptions import NotFoundError
from convai_relay.middleware.auth import require_analytics_access
from convai_relay.schemas.analytics import (
    ConversationDetailResponse,
    FeedbackSummaryResponse,
    MetricsSummaryResponse,
)
from convai_relay.services.analytics import (
    get_conversation_detail,
    get_feedback_summary,
    get_metrics_summary,
)

router = APIRouter(
    prefix="/analytics",
    tags=["analytics"],
    dependencies=[Depends(require_analytics_access)],
)


def _check_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="startDate must not be after endDate",
        )


@router.get("/metrics", response_model=MetricsSummaryResponse)
async def metrics_summary(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
):
    """Headline conversation metrics for the dashboard."""
    _check_range(start_date, end_date)
    return await get_metrics_summary(db, start_date, end_date)


@router.get("/feedback", response_model=FeedbackSummaryResponse)
async def feedback_summary(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    _check_range(start_date, end_date)
    return await get_feedback_summary(
        db,
        limit=limit or get_settings().RECENT_FEEDBACK_LIMIT,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/conversation", response_model=ConversationDetailResponse)
async def conversation_detail(
    conversation_id: Optional[int] = Query(None, alias="conversationId"),
    db: AsyncSession = Depends(get_db),
):
    """A single conversation; the most recent one when no id is given."""
    try:
        return await get_conversation_detail(db, conversation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
