"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import AuthPolicy, settings
from src.database.dependencies import get_db_session
from src.features.notifications.service import Notifier, get_notifier
from src.features.tokens.exceptions import InvalidOrExpiredToken
from src.features.user.models import User
from src.features.user.service import CredentialStore

from .exceptions import AccountInactive, AccountLocked
from .jwt_utils import TokenIssuer, TokenType, get_token_issuer
from .service import AuthService

security = HTTPBearer(auto_error=False)


def get_auth_policy() -> AuthPolicy:
    """Lifecycle policy built from settings."""
    return settings.auth_policy()


def get_device_info(request: Request) -> str | None:
    """Device descriptor recorded on new sessions (the client's User-Agent)."""
    return request.headers.get("user-agent")


def get_auth_service(
    session: AsyncSession = Depends(get_db_session),
    policy: AuthPolicy = Depends(get_auth_policy),
    issuer: TokenIssuer = Depends(get_token_issuer),
    notifier: Notifier = Depends(get_notifier),
) -> AuthService:
    return AuthService(session, policy, issuer, notifier, client_url=settings.client_url)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session: AsyncSession = Depends(get_db_session),
    policy: AuthPolicy = Depends(get_auth_policy),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> User:
    """Get the current authenticated user from an access token.

    Only ``type=access`` credentials are accepted; refresh and 2FA challenge
    credentials are rejected here.

    Args:
        credentials: HTTP authorization credentials with bearer token
        session: Database session
        policy: Lifecycle policy
        issuer: Token issuer used to verify the credential

    Returns:
        User object

    Raises:
        InvalidOrExpiredToken: If the token is missing, invalid or the user no longer exists
        AccountInactive: If the account has been deactivated
        AccountLocked: If the account is inside a lock window

    """
    if credentials is None:
        raise InvalidOrExpiredToken("Not authenticated")

    user_id = issuer.user_id_from(credentials.credentials, TokenType.ACCESS)

    store = CredentialStore(session, policy)
    user = await store.get_by_id(user_id)
    if user is None:
        raise InvalidOrExpiredToken()

    if not user.is_active:
        raise AccountInactive()

    if store.is_locked(user):
        raise AccountLocked()

    return user
