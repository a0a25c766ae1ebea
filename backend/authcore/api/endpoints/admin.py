"""Admin-only endpoints: account management and session maintenance."""
from typing import Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from authcore.api import deps
from authcore.core.database import AsyncSessionLocal, get_db
from authcore.schemas.user import CleanupStats, CurrentUser, SweepResult, UserAdminUpdate, UserResponse
from authcore.services.expiry_sweeper import ExpirySweeper
from authcore.services.session_service import SessionService
from authcore.services.session_store import get_cleanup_stats

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/users", response_model=List[UserResponse])
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _admin: CurrentUser = Depends(deps.require_admin),
    service: SessionService = Depends(deps.get_session_service)
) -> List[UserResponse]:
    users = await service.list_users(limit=limit, offset=offset)
    return [UserResponse.model_validate(u) for u in users]


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    data: UserAdminUpdate,
    admin: CurrentUser = Depends(deps.require_admin),
    service: SessionService = Depends(deps.get_session_service)
) -> UserResponse:
    """Activate/deactivate an account or change its role. Deactivation ends all its sessions."""
    user = await service.update_user(user_id, is_active=data.is_active, role=data.role)
    logger.info(f"Admin {admin.username} updated user {user_id}")
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: UUID,
    admin: CurrentUser = Depends(deps.require_admin),
    service: SessionService = Depends(deps.get_session_service)
) -> Dict[str, str]:
    await service.delete_account(user_id)
    logger.info(f"Admin {admin.username} deleted user {user_id}")
    return {"message": "User deleted"}


@router.get("/sessions/stats", response_model=CleanupStats)
async def session_stats(
    _admin: CurrentUser = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db)
) -> CleanupStats:
    """How many session records are expired and waiting for the sweeper."""
    return CleanupStats(**await get_cleanup_stats(db))


@router.post("/sessions/sweep", response_model=SweepResult)
async def sweep_now(
    request: Request,
    admin: CurrentUser = Depends(deps.require_admin)
) -> SweepResult:
    """Run one sweep immediately, outside the regular schedule."""
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        sweeper = ExpirySweeper(AsyncSessionLocal)
    removed = await sweeper.run_once()
    logger.info(f"Admin {admin.username} triggered a sweep: {removed} removed")
    return SweepResult(removed=removed)
