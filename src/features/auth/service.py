"""Authentication service layer: the login and verification state machine."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import AuthPolicy
from src.features.notifications import messages
from src.features.notifications.service import Channel, Notifier
from src.features.session.service import SessionRegistry
from src.features.tokens.exceptions import InvalidOrExpiredToken
from src.features.tokens.models import TokenKind
from src.features.tokens.service import TokenLedger
from src.features.user.exceptions import EmailNotVerified, IncorrectPassword
from src.features.user.models import User
from src.features.user.schemas import UserResponse
from src.features.user.service import CredentialStore, redact_email

from . import totp
from .exceptions import (
    AccountLocked,
    AlreadyVerified,
    InvalidCredentials,
    InvalidTwoFactorCode,
    TwoFactorAlreadyEnabled,
    TwoFactorNotConfigured,
    TwoFactorNotEnabled,
)
from .jwt_utils import TokenIssuer, TokenType
from .schemas import (
    GENERIC_LINK_SENT_MESSAGE,
    BackupCodesResponse,
    LoginOutcome,
    LoginResponse,
    MessageResponse,
    TokenResponse,
    TwoFactorSetupResponse,
)

logger = logging.getLogger(__name__)


class AuthService:
    """Orchestrates login, lockout, 2FA challenges and token-based verification flows.

    Consumes the credential store, the token ledger and the session registry
    over one database session. State that must survive a failed request
    (attempt counters, token attempt charges) is committed before the failure
    is raised. Notifications are sent after the triggering change is committed
    and never fail the operation.
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: AuthPolicy,
        issuer: TokenIssuer,
        notifier: Notifier,
        client_url: str,
    ):
        self.session = session
        self.policy = policy
        self.issuer = issuer
        self.notifier = notifier
        self.client_url = client_url
        self.credentials = CredentialStore(session, policy)
        self.tokens = TokenLedger(session, policy)
        self.sessions = SessionRegistry(session)

    # Registration and login

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
        device_info: str | None = None,
    ) -> LoginResponse:
        """Create an identity, open its first session and send the verification email.

        Raises:
            EmailAlreadyExists: If the email is already registered
            PhoneNumberAlreadyExists: If the phone number belongs to another user

        """
        user = await self.credentials.create_identity(email, password, first_name, last_name, phone_number)
        tokens = await self._grant_access(user, device_info)
        verification_token = await self.tokens.issue(user.id, TokenKind.EMAIL_VERIFICATION)
        await self.session.commit()

        await self._send_email(
            user,
            messages.email_verification(
                self.client_url, verification_token, user.first_name, self.policy.email_verification_ttl
            ),
        )
        return LoginResponse(
            outcome=LoginOutcome.ACCESS_GRANTED,
            user=UserResponse.model_validate(user),
            tokens=tokens,
            message="Registration successful. Please check your email to verify your account.",
        )

    async def login(self, email: str, password: str, device_info: str | None = None) -> LoginResponse:
        """Authenticate with email and password.

        Args:
            email: Email address (case-insensitive)
            password: Plain text password
            device_info: Free-text device descriptor for the new session

        Returns:
            ACCESS_GRANTED with tokens, or TWO_FACTOR_REQUIRED with a short-lived
            challenge credential when 2FA is enabled

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountLocked: The account is inside a lock window

        """
        user = await self.credentials.get_by_email(email)
        if user is None or not user.is_active:
            logger.info(f"Login failed for unknown or inactive account: {redact_email(email)}")
            raise InvalidCredentials()

        if self.credentials.is_locked(user):
            logger.warning(f"Login attempt for locked account: {redact_email(user.email)}")
            raise AccountLocked()

        if not self.credentials.verify_password(user, password):
            await self.credentials.record_failed_attempt(user)
            await self.session.commit()
            raise InvalidCredentials()

        if user.failed_login_attempts > 0 or user.is_locked:
            await self.credentials.reset_attempts(user)

        if user.two_factor_enabled:
            challenge = await self._two_factor_challenge(user)
            await self.session.commit()
            return challenge

        tokens = await self._grant_access(user, device_info)
        await self.session.commit()
        logger.info(f"User logged in: {redact_email(user.email)}")
        return LoginResponse(
            outcome=LoginOutcome.ACCESS_GRANTED,
            user=UserResponse.model_validate(user),
            tokens=tokens,
            message="Login successful",
        )

    async def complete_two_factor_login(
        self, two_factor_token: str, code: str, device_info: str | None = None
    ) -> LoginResponse:
        """Finish a TWO_FACTOR_REQUIRED login with an authenticator or backup code.

        The challenge is single-use and allows ``token_max_attempts`` wrong
        codes; after that, or once a login completed with it, it is rejected
        like any other spent token.

        Raises:
            InvalidOrExpiredToken: The challenge credential is invalid, expired, used or exhausted
            InvalidTwoFactorCode: The code does not verify
            TwoFactorNotEnabled: 2FA was disabled since the challenge was issued

        """
        claims = self.issuer.decode(two_factor_token, TokenType.TWO_FACTOR_PENDING)
        if not claims.get("jti"):
            raise InvalidOrExpiredToken()

        user_id = int(claims["sub"])
        challenge = await self.tokens.redeem(str(claims["jti"]), TokenKind.TWO_FACTOR_CHALLENGE, user_id=user_id)

        user = await self.credentials.get_by_id(user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpiredToken()

        if self.credentials.is_locked(user):
            raise AccountLocked()

        if not user.two_factor_enabled or user.two_factor_secret is None:
            raise TwoFactorNotEnabled()

        if not await self._verify_second_factor(user, code):
            await self.tokens.record_failed_check(challenge)
            await self.session.commit()
            logger.info(f"Invalid 2FA code at login for user {user.id} (attempt {challenge.attempts})")
            raise InvalidTwoFactorCode()

        await self.tokens.mark_used(challenge)
        tokens = await self._grant_access(user, device_info)
        await self.session.commit()
        logger.info(f"User logged in with 2FA: {redact_email(user.email)}")
        return LoginResponse(
            outcome=LoginOutcome.ACCESS_GRANTED,
            user=UserResponse.model_validate(user),
            tokens=tokens,
            message="Login successful",
        )

    async def refresh(self, refresh_token: str, device_info: str | None = None) -> TokenResponse:
        """Rotate a session credential and mint a new access credential.

        Raises:
            InvalidOrExpiredToken: Bad signature or type, unknown or inactive identity,
                or a credential that was already rotated, revoked or has expired

        """
        user_id = self.issuer.user_id_from(refresh_token, TokenType.REFRESH)
        user = await self.credentials.get_by_id(user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpiredToken()

        new_refresh_token = self.issuer.issue_refresh_token(user.id)
        rotated = await self.sessions.rotate(
            user.id, refresh_token, new_refresh_token, self.policy.refresh_token_ttl, device_info
        )
        if not rotated:
            raise InvalidOrExpiredToken()

        await self.session.commit()
        return self._token_response(user, new_refresh_token)

    async def logout(self, user: User, refresh_token: str) -> MessageResponse:
        """Revoke the session holding ``refresh_token``; unknown values are ignored."""
        await self.sessions.revoke_one(user.id, token=refresh_token)
        await self.session.commit()
        logger.info(f"User logged out: {redact_email(user.email)}")
        return MessageResponse(message="Successfully logged out")

    async def logout_all(self, user: User) -> MessageResponse:
        count = await self.sessions.revoke_all(user.id)
        await self.session.commit()
        return MessageResponse(message=f"Logged out from {count} session(s)")

    # Password reset and magic link

    async def request_password_reset(self, email: str) -> MessageResponse:
        """Send a reset link if the account exists. The response never reveals which."""
        user = await self.credentials.get_by_email(email)
        if user is None or not user.is_active:
            logger.info(f"Password reset requested for unknown account: {redact_email(email)}")
            return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)

        value = await self.tokens.issue(user.id, TokenKind.PASSWORD_RESET)
        await self.session.commit()
        await self._send_email(
            user, messages.password_reset(self.client_url, value, user.first_name, self.policy.password_reset_ttl)
        )
        return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)

    async def reset_password(self, token: str, new_password: str) -> MessageResponse:
        """Replace the password with a reset token and revoke every session.

        Raises:
            InvalidOrExpiredToken: The token is unknown, used, expired or exhausted

        """
        reset_token = await self.tokens.redeem(token, TokenKind.PASSWORD_RESET)
        user = await self.credentials.get_by_id(reset_token.user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpiredToken()

        await self.tokens.mark_used(reset_token)
        await self.credentials.set_password(user, new_password)
        revoked = await self.sessions.revoke_all(user.id)
        await self.session.commit()

        logger.info(f"Password reset for {redact_email(user.email)}; {revoked} session(s) revoked")
        await self._send_email(user, messages.security_alert(user.first_name, "password_changed"))
        return MessageResponse(message="Password reset successful")

    async def request_magic_link(self, email: str) -> MessageResponse:
        """Send a sign-in link if the account exists. Same response as a password reset request."""
        user = await self.credentials.get_by_email(email)
        if user is None or not user.is_active:
            logger.info(f"Magic link requested for unknown account: {redact_email(email)}")
            return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)

        value = await self.tokens.issue(user.id, TokenKind.MAGIC_LINK)
        await self.session.commit()
        await self._send_email(
            user, messages.magic_link(self.client_url, value, user.first_name, self.policy.magic_link_ttl)
        )
        return MessageResponse(message=GENERIC_LINK_SENT_MESSAGE)

    async def verify_magic_link(self, token: str, device_info: str | None = None) -> LoginResponse:
        """Sign in with a magic link.

        The second factor is skipped unless ``magic_link_requires_two_factor``
        is set on the policy.

        Raises:
            InvalidOrExpiredToken: The link is unknown, used, expired or exhausted

        """
        link = await self.tokens.redeem(token, TokenKind.MAGIC_LINK)
        user = await self.credentials.get_by_id(link.user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpiredToken()

        await self.tokens.mark_used(link)

        if user.two_factor_enabled:
            if self.policy.magic_link_requires_two_factor:
                challenge = await self._two_factor_challenge(user)
                await self.session.commit()
                return challenge
            logger.warning(f"Magic link sign-in skipped 2FA for user {user.id}")

        tokens = await self._grant_access(user, device_info)
        await self.session.commit()
        logger.info(f"User logged in with magic link: {redact_email(user.email)}")
        return LoginResponse(
            outcome=LoginOutcome.ACCESS_GRANTED,
            user=UserResponse.model_validate(user),
            tokens=tokens,
            message="Magic link verification successful",
        )

    # Email and phone verification

    async def request_email_verification(self, user: User) -> MessageResponse:
        """Send a fresh verification link.

        Raises:
            AlreadyVerified: The email is already verified

        """
        if user.is_email_verified:
            raise AlreadyVerified()

        value = await self.tokens.issue(user.id, TokenKind.EMAIL_VERIFICATION)
        await self.session.commit()
        await self._send_email(
            user,
            messages.email_verification(self.client_url, value, user.first_name, self.policy.email_verification_ttl),
        )
        return MessageResponse(message="Verification email sent successfully")

    async def verify_email(self, token: str) -> MessageResponse:
        """Mark the owning identity's email as verified."""
        verification = await self.tokens.redeem(token, TokenKind.EMAIL_VERIFICATION)
        user = await self.credentials.get_by_id(verification.user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpiredToken()

        await self.tokens.mark_used(verification)
        await self.credentials.mark_email_verified(user)
        await self.session.commit()
        return MessageResponse(message="Email verified successfully")

    async def request_phone_otp(self, user: User, phone_number: str) -> MessageResponse:
        """Text a 6-digit code proving ownership of ``phone_number``.

        The number is only attached to the identity once the code is verified.
        """
        code = await self.tokens.issue(user.id, TokenKind.PHONE_OTP, pending_phone_number=phone_number)
        await self.session.commit()

        message = messages.phone_otp(code, self.policy.otp_ttl)
        result = await self.notifier.notify(Channel.SMS, phone_number, message.body)
        if not result.delivered:
            logger.warning(f"Phone OTP for user {user.id} was not delivered: {result.error}")
        return MessageResponse(message="Verification code sent")

    async def verify_phone_otp(self, user: User, code: str) -> MessageResponse:
        """Commit the pending phone number after checking the code belongs to ``user``.

        Only the requester's own codes are accepted, so a value that happens to
        collide with another identity's outstanding code still verifies. A
        wrong code is charged against the requester's outstanding codes and,
        when it matches another identity's code, against that code too. Both
        surface as InvalidOrExpiredToken.

        Raises:
            InvalidOrExpiredToken: The code is wrong, expired, exhausted or not the requester's
            PhoneNumberAlreadyExists: The number was verified by another user meanwhile

        """
        otp = await self.tokens.find_valid(code, TokenKind.PHONE_OTP, user_id=user.id)
        if otp is None:
            foreign = await self.tokens.find_valid(code, TokenKind.PHONE_OTP)
            if foreign is not None:
                logger.warning(f"Phone OTP belonging to user {foreign.user_id} submitted by user {user.id}")
                await self.tokens.record_failed_check(foreign)
            await self.tokens.record_failed_guess(user.id, TokenKind.PHONE_OTP)
            await self.session.commit()
            raise InvalidOrExpiredToken()

        await self.tokens.mark_used(otp)
        await self.credentials.commit_phone_number(user, otp.pending_phone_number)
        await self.session.commit()
        return MessageResponse(message="Phone number verified successfully")

    # Two-factor authentication

    async def setup_two_factor(self, user: User) -> TwoFactorSetupResponse:
        """Generate and store a pending TOTP secret; 2FA stays disabled until verified.

        Raises:
            TwoFactorAlreadyEnabled: 2FA is already active

        """
        if user.two_factor_enabled:
            raise TwoFactorAlreadyEnabled()

        secret = totp.generate_secret()
        await self.credentials.set_pending_two_factor_secret(user, secret)
        await self.session.commit()
        logger.info(f"2FA setup initiated for user {user.id}")
        return TwoFactorSetupResponse(
            secret=secret,
            provisioning_uri=totp.provisioning_uri(secret, user.email, self.policy.totp_issuer),
        )

    async def verify_two_factor(self, user: User, code: str) -> BackupCodesResponse:
        """Confirm the pending secret, enable 2FA and issue a fresh set of backup codes.

        Verifying again while already enabled regenerates the backup codes.

        Raises:
            TwoFactorNotConfigured: No secret has been set up
            InvalidTwoFactorCode: The code does not verify

        """
        if user.two_factor_secret is None:
            raise TwoFactorNotConfigured()

        if not totp.verify(user.two_factor_secret, code, self.policy.totp_valid_window):
            raise InvalidTwoFactorCode()

        await self.credentials.enable_two_factor(user)
        codes = await self.credentials.replace_backup_codes(user)
        await self.session.commit()

        await self._send_email(user, messages.security_alert(user.first_name, "2fa_enabled"))
        return BackupCodesResponse(
            backup_codes=codes,
            message="Two-factor authentication enabled. Store these backup codes somewhere safe.",
        )

    async def disable_two_factor(self, user: User, code: str) -> MessageResponse:
        """Disable 2FA with a valid authenticator code.

        Raises:
            TwoFactorNotEnabled: 2FA is not active
            InvalidTwoFactorCode: The code does not verify

        """
        if not user.two_factor_enabled or user.two_factor_secret is None:
            raise TwoFactorNotEnabled()

        if not totp.verify(user.two_factor_secret, code, self.policy.totp_valid_window):
            raise InvalidTwoFactorCode()

        await self.credentials.clear_two_factor(user)
        await self.session.commit()

        await self._send_email(user, messages.security_alert(user.first_name, "2fa_disabled"))
        return MessageResponse(message="Two-factor authentication disabled")

    async def regenerate_backup_codes(self, user: User) -> BackupCodesResponse:
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabled()

        codes = await self.credentials.replace_backup_codes(user)
        await self.session.commit()
        logger.info(f"Backup codes regenerated for user {user.id}")
        return BackupCodesResponse(backup_codes=codes, message="Backup codes regenerated")

    # Account

    async def change_password(
        self, user: User, current_password: str, new_password: str, keep_refresh_token: str | None = None
    ) -> MessageResponse:
        """Change the password and revoke every session except ``keep_refresh_token``.

        Raises:
            IncorrectPassword: ``current_password`` does not match

        """
        if not self.credentials.verify_password(user, current_password):
            raise IncorrectPassword()

        await self.credentials.set_password(user, new_password)
        await self.sessions.revoke_all(user.id, except_token=keep_refresh_token)
        await self.session.commit()

        await self._send_email(user, messages.security_alert(user.first_name, "password_changed"))
        return MessageResponse(message="Password changed successfully")

    async def deactivate(self, user: User) -> MessageResponse:
        """Soft-delete the account and revoke all of its sessions.

        Raises:
            EmailNotVerified: Only accounts with a verified email can be deactivated

        """
        if not user.is_email_verified:
            raise EmailNotVerified()

        await self.sessions.revoke_all(user.id)
        await self.credentials.deactivate(user)
        await self.session.commit()
        return MessageResponse(message="Account deactivated successfully")

    # Helpers

    async def _grant_access(self, user: User, device_info: str | None) -> TokenResponse:
        """Mint credentials, open a session and stamp the login time."""
        refresh_token = self.issuer.issue_refresh_token(user.id)
        await self.sessions.add_session(user.id, refresh_token, self.policy.refresh_token_ttl, device_info)
        await self.credentials.record_login(user)
        return self._token_response(user, refresh_token)

    def _token_response(self, user: User, refresh_token: str) -> TokenResponse:
        access_token = self.issuer.issue_access_token(user.id, {"role": user.role})
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.policy.access_token_ttl.total_seconds()),
        )

    async def _two_factor_challenge(self, user: User) -> LoginResponse:
        """Record a pending login in the ledger and hand out its credential."""
        challenge = await self.tokens.issue(user.id, TokenKind.TWO_FACTOR_CHALLENGE)
        logger.info(f"2FA challenge issued for user {user.id}")
        return LoginResponse(
            outcome=LoginOutcome.TWO_FACTOR_REQUIRED,
            user=UserResponse.model_validate(user),
            two_factor_token=self.issuer.issue_two_factor_token(user.id, challenge),
            message="Two-factor authentication required",
        )

    async def _verify_second_factor(self, user: User, code: str) -> bool:
        """Accept a TOTP code, or else consume a backup code."""
        if code.isdigit() and len(code) == 6:
            return totp.verify(user.two_factor_secret, code, self.policy.totp_valid_window)

        if not await self.credentials.consume_backup_code(user, code):
            return False

        remaining = await self.credentials.count_unused_backup_codes(user)
        logger.info(f"Backup code used by user {user.id}; {remaining} remaining")
        return True

    async def _send_email(self, user: User, message: messages.Message) -> None:
        result = await self.notifier.notify(Channel.EMAIL, user.email, message.body, subject=message.subject)
        if not result.delivered:
            logger.warning(f"'{message.subject}' email to {redact_email(user.email)} was not delivered")
