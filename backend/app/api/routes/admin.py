"""
Admin Routes for Refund Management

List refund requests, act on them, and initiate refunds for any payment.
Protected by bearer authentication plus the admin role.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import AdminUserDep, RefundServiceDep, get_admin_user_id
from app.domain.billing import (
    AdminInitiateRefundRequest,
    AdminRefundActionRequest,
    RefundRead,
    RefundStatus,
)

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(get_admin_user_id)]  # Protect ALL admin routes
)


@router.get("/refunds", response_model=list[RefundRead])
async def list_refunds(
    service: RefundServiceDep,
    status: Optional[RefundStatus] = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
):
    """List refund requests, newest first."""
    return await service.list_refunds(status, skip=skip, limit=limit)


@router.post("/refunds", response_model=RefundRead)
async def act_on_refund(
    request: AdminRefundActionRequest,
    admin_id: AdminUserDep,
    service: RefundServiceDep,
):
    """
    Apply an admin action to a refund request.

    Actions:
    - approve: pending -> approved, no money moves
    - process: refund through the gateway, then revoke access
    - reject: pending or approved -> rejected
    - mark_processed: record a refund made outside the gateway client
    """
    logger.info(f"Admin {admin_id} requested {request.action.value} on refund {request.refund_id}")
    return await service.apply_action(admin_id, request)


@router.post("/refunds/initiate", response_model=RefundRead)
async def initiate_refund(
    request: AdminInitiateRefundRequest,
    admin_id: AdminUserDep,
    service: RefundServiceDep,
):
    """Create a refund for a completed payment, processing it unless asked not to."""
    return await service.initiate(admin_id, request)
