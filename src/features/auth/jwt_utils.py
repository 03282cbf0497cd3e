"""JWT utilities: the token issuer for access, refresh and 2FA challenge credentials."""

import secrets
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from functools import lru_cache
from typing import Any

import jwt
from jwt.exceptions import InvalidTokenError

from src.config.settings import AuthPolicy, settings
from src.features.tokens.exceptions import InvalidOrExpiredToken


class TokenType(StrEnum):
    """Type discriminator carried in every credential's ``type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"
    TWO_FACTOR_PENDING = "two_factor_pending"


class TokenIssuer:
    """Mints and verifies signed credentials.

    Stateless beyond its signing keys. Refresh credentials are signed with a
    separate secret, and every credential carries a type claim so one kind can
    never be accepted where another is expected.
    """

    def __init__(self, access_secret: str, refresh_secret: str, algorithm: str, policy: AuthPolicy):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.policy = policy

    def issue_access_token(self, user_id: int, extra_claims: dict[str, Any] | None = None) -> str:
        """Create a short-lived access credential.

        Args:
            user_id: Identity the credential is issued to
            extra_claims: Additional non-reserved claims (e.g. role)

        Returns:
            Encoded JWT string

        """
        return self._encode(user_id, TokenType.ACCESS, self.policy.access_token_ttl, extra_claims)

    def issue_refresh_token(self, user_id: int) -> str:
        """Create a long-lived session credential.

        A random ``jti`` keeps two credentials minted in the same second distinct.
        """
        return self._encode(
            user_id, TokenType.REFRESH, self.policy.refresh_token_ttl, {"jti": secrets.token_urlsafe(16)}
        )

    def issue_two_factor_token(self, user_id: int, challenge: str) -> str:
        """Create the intermediate credential accepted only by the 2FA login step.

        ``challenge`` is the ledger value of the pending login and becomes the
        ``jti``; the signature alone does not make the credential usable.
        """
        return self._encode(
            user_id,
            TokenType.TWO_FACTOR_PENDING,
            self.policy.two_factor_challenge_ttl,
            {"jti": challenge},
        )

    def decode(self, token: str, expected_type: TokenType) -> dict[str, Any]:
        """Verify signature, expiry and type of a credential.

        Args:
            token: Encoded JWT string
            expected_type: Type the caller is willing to accept

        Returns:
            Decoded claims

        Raises:
            InvalidOrExpiredToken: If the credential is malformed, expired, of the wrong type
                or carries no subject

        """
        try:
            payload = jwt.decode(token, self._secret_for(expected_type), algorithms=[self.algorithm])
        except InvalidTokenError as err:
            raise InvalidOrExpiredToken() from err

        if payload.get("type") != expected_type.value:
            raise InvalidOrExpiredToken()

        subject = payload.get("sub")
        if subject is None or not str(subject).isdigit():
            raise InvalidOrExpiredToken()

        return payload

    def user_id_from(self, token: str, expected_type: TokenType) -> int:
        """Decode a credential and return the identity it was issued to."""
        return int(self.decode(token, expected_type)["sub"])

    def _secret_for(self, token_type: TokenType) -> str:
        return self.refresh_secret if token_type == TokenType.REFRESH else self.access_secret

    def _encode(
        self,
        user_id: int,
        token_type: TokenType,
        ttl: timedelta,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        now = datetime.now(UTC)
        to_encode: dict[str, Any] = dict(extra_claims or {})
        to_encode.update({"sub": str(user_id), "type": token_type.value, "iat": now, "exp": now + ttl})
        return jwt.encode(to_encode, self._secret_for(token_type), algorithm=self.algorithm)


@lru_cache
def get_token_issuer() -> TokenIssuer:
    """Issuer built from settings (FastAPI dependency)."""
    return TokenIssuer(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        algorithm=settings.jwt_algorithm,
        policy=settings.auth_policy(),
    )
