"""Widget configuration endpoints for the current admin"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.database import get_db
from convai_relay.middleware.auth import get_current_admin
from convai_relay.models.admin import Admin
from convai_relay.models.widget_config import DEFAULT_THEME, WidgetConfig
from convai_relay.schemas.widget_config import WidgetConfigCreate, WidgetConfigResponse
from convai_relay.services.encryption import encrypt_api_key

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/widget-configs", tags=["widget-configs"])


@router.post("", response_model=WidgetConfigResponse, status_code=status.HTTP_201_CREATED)
async def create_widget_config(
    payload: WidgetConfigCreate,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a widget bound to a provider agent; the API key is stored encrypted."""
    config = WidgetConfig(
        admin_id=admin.id,
        name=payload.name,
        agent_id=payload.agent_id,
        api_key_encrypted=encrypt_api_key(payload.api_key),
        theme={**DEFAULT_THEME, **(payload.theme or {})},
        active=True,
    )
    db.add(config)
    await db.commit()
    await db.refresh(config)

    logger.info(f"Widget config created: id={config.id} admin_id={admin.id} agent_id={config.agent_id}")
    return config


@router.get("", response_model=List[WidgetConfigResponse])
async def list_widget_configs(
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(WidgetConfig)
        .where(WidgetConfig.admin_id == admin.id)
        .order_by(WidgetConfig.created_at.desc(), WidgetConfig.id.desc())
    )
    return result.scalars().all()
