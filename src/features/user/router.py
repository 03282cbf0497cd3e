"""User profile and session management router (API endpoints)."""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import AuthPolicy
from src.database.dependencies import get_db_session
from src.features.auth.dependencies import get_auth_policy, get_auth_service, get_current_user
from src.features.auth.schemas import MessageResponse
from src.features.auth.service import AuthService
from src.features.session.service import SessionRegistry

from .models import User
from .schemas import (
    PasswordChangeRequest,
    RevokeOtherSessionsRequest,
    SessionListResponse,
    SessionResponse,
    UserResponse,
    UserUpdateRequest,
)
from .service import CredentialStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/user", tags=["User Management"])


@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return UserResponse.model_validate(current_user)


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    policy: AuthPolicy = Depends(get_auth_policy),
):
    """Update the current user's profile (first_name, last_name, phone_number).

    Changing the phone number clears its verified flag.
    """
    user = await CredentialStore(session, policy).update_profile(
        current_user,
        first_name=data.first_name,
        last_name=data.last_name,
        phone_number=data.phone_number,
    )
    await session.commit()
    return UserResponse.model_validate(user)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Change current user's password. Every other session is revoked."""
    return await service.change_password(
        current_user, data.current_password, data.new_password, keep_refresh_token=data.refresh_token
    )


@router.delete("/account", response_model=MessageResponse)
async def delete_account(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Deactivate the current account. Requires a verified email."""
    return await service.deactivate(current_user)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List the current user's active sessions, newest first."""
    sessions = await SessionRegistry(session).list_active(current_user.id)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=len(sessions),
    )


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: int,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke one session. Revoking an unknown session id also succeeds."""
    await SessionRegistry(session).revoke_one(current_user.id, session_id=session_id)
    await session.commit()
    return MessageResponse(message="Session revoked successfully")


@router.delete("/sessions", response_model=MessageResponse)
async def revoke_all_sessions(
    data: RevokeOtherSessionsRequest | None = Body(None),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke every session except the one holding `current_refresh_token`.

    Without `current_refresh_token` (or when it matches no session) every session is revoked.
    """
    keep = data.current_refresh_token if data else None
    count = await SessionRegistry(session).revoke_all(current_user.id, except_token=keep)
    await session.commit()
    logger.info(f"User {current_user.id} revoked {count} session(s)")
    return MessageResponse(message="All sessions revoked successfully")
