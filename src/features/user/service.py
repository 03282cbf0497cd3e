"""User service layer: the credential store."""

import logging
import secrets
from datetime import datetime

from sqlalchemy import case, delete, func, literal, null, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import AuthPolicy
from src.database.base import UTCDateTime, utcnow

from .exceptions import EmailAlreadyExists, PhoneNumberAlreadyExists
from .models import BackupCode, User, UserRole

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def redact_email(email: str) -> str:
    """Redact an email address for log lines."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class CredentialStore:
    """Owns the identity record: password digest, verification flags, lockout and 2FA state.

    Every mutation that can race with another request against the same
    identity is a single conditional UPDATE; the in-memory ``User`` is refreshed
    afterwards instead of being written back.
    """

    def __init__(self, session: AsyncSession, policy: AuthPolicy):
        self.session = session
        self.policy = policy

    # Lookup

    async def get_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == normalize_email(email))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Registration

    async def create_identity(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone_number: str | None = None,
        role: UserRole = UserRole.USER,
    ) -> User:
        """Create a password-backed identity.

        Raises:
            EmailAlreadyExists: If the email is already registered
            PhoneNumberAlreadyExists: If the phone number belongs to another user

        """
        email = normalize_email(email)
        if await self.get_by_email(email) is not None:
            raise EmailAlreadyExists()

        if phone_number is not None and await self._phone_taken(phone_number):
            raise PhoneNumberAlreadyExists()

        user = User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone_number=phone_number,
            hashed_password=User.hash_password(password),
            role=role.value,
            is_email_verified=False,
            is_phone_verified=False,
            two_factor_enabled=False,
            is_active=True,
            failed_login_attempts=0,
            is_locked=False,
            password_changed_at=utcnow(),
        )
        self.session.add(user)

        # A concurrent registration may win a unique index between the checks and the insert
        try:
            await self.session.flush()
        except IntegrityError as err:
            await self.session.rollback()
            if await self.get_by_email(email) is not None:
                raise EmailAlreadyExists() from err
            if phone_number is not None and await self._phone_taken(phone_number):
                raise PhoneNumberAlreadyExists() from err
            raise

        logger.info(f"New user registered: {redact_email(user.email)}")
        return user

    # Password and lockout

    def verify_password(self, user: User, candidate: str) -> bool:
        """Check a candidate password; fails closed for federated identities."""
        return user.verify_password(candidate)

    def is_locked(self, user: User) -> bool:
        """True iff the lock flag is set and the lock has not expired."""
        return user.is_account_locked()

    async def record_failed_attempt(self, user: User) -> User:
        """Count a failed password check and lock the account at the threshold.

        A lock that has already expired is forgiven: the counter restarts at 1
        and the lock flag is cleared in the same statement.
        """
        now = utcnow()
        lock_expiry = now + self.policy.lock_duration

        stale_lock = User.locked_until.is_not(None) & (User.locked_until <= literal(now, UTCDateTime()))
        reaches_threshold = ~User.is_locked & (User.failed_login_attempts >= self.policy.lockout_threshold - 1)

        stmt = (
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=case((stale_lock, 1), else_=User.failed_login_attempts + 1),
                is_locked=case((stale_lock, False), (reaches_threshold, True), else_=User.is_locked),
                locked_until=case(
                    (stale_lock, null()),
                    (reaches_threshold, literal(lock_expiry, UTCDateTime())),
                    else_=User.locked_until,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.refresh(user)

        if user.is_account_locked():
            logger.warning(
                f"Account locked after {user.failed_login_attempts} failed attempts: {redact_email(user.email)}"
            )
        else:
            logger.info(f"Failed login attempt {user.failed_login_attempts} for {redact_email(user.email)}")
        return user

    async def reset_attempts(self, user: User) -> User:
        """Clear the failed-attempt counter and any lock."""
        stmt = (
            update(User)
            .where(User.id == user.id)
            .values(failed_login_attempts=0, is_locked=False, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.refresh(user)
        return user

    async def set_password(self, user: User, new_password: str) -> User:
        """Replace the password digest (salt handled automatically by Argon2)."""
        user.hashed_password = User.hash_password(new_password)
        user.password_changed_at = utcnow()
        await self.session.flush()
        logger.info(f"Password changed for user: {redact_email(user.email)}")
        return user

    async def record_login(self, user: User) -> User:
        user.last_login_at = utcnow()
        await self.session.flush()
        return user

    # Verification

    async def mark_email_verified(self, user: User) -> User:
        user.is_email_verified = True
        await self.session.flush()
        logger.info(f"Email verified: {redact_email(user.email)}")
        return user

    async def commit_phone_number(self, user: User, phone_number: str) -> User:
        """Attach a phone number proven by OTP and mark it verified."""
        if phone_number != user.phone_number and await self._phone_taken(phone_number, exclude_user_id=user.id):
            raise PhoneNumberAlreadyExists()

        user.phone_number = phone_number
        user.is_phone_verified = True
        await self.session.flush()
        logger.info(f"Phone number verified for user {user.id}")
        return user

    # Profile

    async def update_profile(
        self,
        user: User,
        first_name: str | None = None,
        last_name: str | None = None,
        phone_number: str | None = None,
    ) -> User:
        """Update profile fields; a changed phone number must be verified again."""
        if first_name is not None:
            user.first_name = first_name.strip()
        if last_name is not None:
            user.last_name = last_name.strip()
        if phone_number is not None and phone_number != user.phone_number:
            if await self._phone_taken(phone_number, exclude_user_id=user.id):
                raise PhoneNumberAlreadyExists()
            user.phone_number = phone_number
            user.is_phone_verified = False

        await self.session.flush()
        logger.info(f"User updated: {user.id}")
        return user

    async def deactivate(self, user: User, at: datetime | None = None) -> User:
        """Soft-delete: clear ``is_active`` and free the email for reuse.

        The email mangling is irreversible.
        """
        at = at or utcnow()
        original = user.email
        user.is_active = False
        user.email = f"deleted_{int(at.timestamp() * 1000)}_{original}"
        await self.session.flush()
        logger.info(f"User deactivated: {redact_email(original)}")
        return user

    # Two-factor material

    async def set_pending_two_factor_secret(self, user: User, secret: str) -> User:
        """Store a TOTP secret without enabling 2FA."""
        user.two_factor_secret = secret
        await self.session.flush()
        return user

    async def enable_two_factor(self, user: User) -> User:
        user.two_factor_enabled = True
        await self.session.flush()
        logger.info(f"Two-factor authentication enabled for user {user.id}")
        return user

    async def clear_two_factor(self, user: User) -> User:
        """Disable 2FA and drop the secret and every backup code."""
        user.two_factor_enabled = False
        user.two_factor_secret = None
        await self.session.execute(delete(BackupCode).where(BackupCode.user_id == user.id))
        await self.session.flush()
        logger.info(f"Two-factor authentication disabled for user {user.id}")
        return user

    async def replace_backup_codes(self, user: User) -> list[str]:
        """Generate a fresh set of backup codes, discarding the previous set.

        Codes are 8 uppercase hex characters.
        """
        codes: set[str] = set()
        while len(codes) < self.policy.backup_code_count:
            codes.add(secrets.token_hex(4).upper())

        await self.session.execute(delete(BackupCode).where(BackupCode.user_id == user.id))
        self.session.add_all([BackupCode(user_id=user.id, code=code, used=False) for code in codes])
        await self.session.flush()
        return sorted(codes)

    async def consume_backup_code(self, user: User, code: str) -> bool:
        """Mark a backup code used; False if it is unknown or already spent."""
        stmt = (
            update(BackupCode)
            .where(
                BackupCode.user_id == user.id,
                BackupCode.code == code.strip().upper(),
                ~BackupCode.used,
            )
            .values(used=True, used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        consumed = result.rowcount == 1
        if consumed:
            logger.info(f"Backup code consumed for user {user.id}")
        return consumed

    async def count_unused_backup_codes(self, user: User) -> int:
        stmt = select(func.count()).select_from(BackupCode).where(BackupCode.user_id == user.id, ~BackupCode.used)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def _phone_taken(self, phone_number: str, exclude_user_id: int | None = None) -> bool:
        stmt = select(User.id).where(User.phone_number == phone_number)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        result = await self.session.execute(stmt)
        return result.first() is not None
