"""Tests for the auth feature.
Covers: AuthService (login state machine, lockout, 2FA, verification flows) and the /auth endpoints.
"""

import re
from dataclasses import replace
from datetime import timedelta

import pyotp
import pytest
from fastapi import status
from sqlalchemy import select

from src.config.settings import settings
from src.database.base import utcnow
from src.features.auth.exceptions import (
    AccountLocked,
    AlreadyVerified,
    InvalidCredentials,
    InvalidTwoFactorCode,
    TwoFactorAlreadyEnabled,
    TwoFactorNotConfigured,
    TwoFactorNotEnabled,
)
from src.features.auth.jwt_utils import TokenType
from src.features.auth.schemas import GENERIC_LINK_SENT_MESSAGE, LoginOutcome
from src.features.auth.service import AuthService
from src.features.notifications.service import Channel, Notifier
from src.features.session.models import DEVICE_INFO_MAX_LENGTH, UserSession
from src.features.tokens import service as token_service
from src.features.tokens.exceptions import InvalidOrExpiredToken
from src.features.tokens.models import PhoneOtpToken
from src.features.user.exceptions import EmailAlreadyExists
from src.shared.errors import AuthErrorKind
from src.shared.rate_limit import limiter

DEFAULT_PASSWORD = "TestPass123"


def _wrong_totp(secret: str) -> str:
    """A 6-digit code that does not verify anywhere in the current window."""
    totp = pyotp.TOTP(secret)
    for candidate in range(100000, 1000000, 7919):
        code = str(candidate)
        if not totp.verify(code, valid_window=1):
            return code
    raise AssertionError("No rejected code found")


def _other_code(code: str) -> str:
    return "100000" if code != "100000" else "100001"


async def _enable_two_factor(auth_service: AuthService, user) -> tuple[str, list[str]]:
    setup = await auth_service.setup_two_factor(user)
    result = await auth_service.verify_two_factor(user, pyotp.TOTP(setup.secret).now())
    return setup.secret, result.backup_codes


async def _latest_phone_otp(session, user_id: int) -> PhoneOtpToken:
    result = await session.execute(
        select(PhoneOtpToken)
        .where(PhoneOtpToken.user_id == user_id)
        .order_by(PhoneOtpToken.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.fixture
def rate_limited(monkeypatch):
    """Turn the limiter on with empty counters for one test."""
    limiter.reset()
    monkeypatch.setattr(limiter, "enabled", True)
    yield
    limiter.reset()


# AuthService.register / login


class TestRegisterAndLogin:
    async def test_register_then_login_opens_two_sessions(self, auth_service, store, registry, notifier):
        registered = await auth_service.register("Alice@Example.com", "Secret123", "Alice", "Smith")

        assert registered.outcome == LoginOutcome.ACCESS_GRANTED
        assert registered.tokens is not None
        assert registered.user.email == "alice@example.com"
        assert registered.user.is_email_verified is False
        assert notifier.last().subject == "Verify Your Email"

        logged_in = await auth_service.login("alice@example.com", "Secret123", "Laptop")

        assert logged_in.outcome == LoginOutcome.ACCESS_GRANTED
        assert logged_in.tokens.refresh_token != registered.tokens.refresh_token
        user = await store.get_by_email("alice@example.com")
        assert len(await registry.list_active(user.id)) == 2
        assert user.last_login_at is not None

    async def test_duplicate_registration(self, auth_service, make_user):
        await make_user(email="dup@example.com")

        with pytest.raises(EmailAlreadyExists):
            await auth_service.register("dup@example.com", "Secret123", "Dup", "User")

    async def test_unknown_email_and_wrong_password_look_the_same(self, auth_service, make_user):
        await make_user(email="known@example.com")

        with pytest.raises(InvalidCredentials) as unknown:
            await auth_service.login("nobody@example.com", DEFAULT_PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            await auth_service.login("known@example.com", "WrongPass1")

        assert unknown.value.kind == wrong.value.kind == AuthErrorKind.INVALID_CREDENTIALS
        assert unknown.value.message == wrong.value.message

    async def test_inactive_account_cannot_login(self, auth_service, make_user):
        await make_user(email="gone@example.com", is_active=False)

        with pytest.raises(InvalidCredentials):
            await auth_service.login("gone@example.com", DEFAULT_PASSWORD)

    async def test_five_failures_lock_even_the_right_password(self, auth_service, make_user):
        user = await make_user(email="victim@example.com")

        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                await auth_service.login("victim@example.com", "WrongPass1")

        assert user.failed_login_attempts == 5
        with pytest.raises(AccountLocked):
            await auth_service.login("victim@example.com", DEFAULT_PASSWORD)

    async def test_success_resets_failed_attempts(self, auth_service, make_user):
        user = await make_user(email="retry@example.com")
        for _ in range(2):
            with pytest.raises(InvalidCredentials):
                await auth_service.login("retry@example.com", "WrongPass1")

        await auth_service.login("retry@example.com", DEFAULT_PASSWORD)

        assert user.failed_login_attempts == 0

    async def test_expired_lock_allows_login(self, auth_service, make_user):
        user = await make_user(
            email="paroled@example.com",
            failed_login_attempts=5,
            is_locked=True,
            locked_until=utcnow() - timedelta(minutes=1),
        )

        response = await auth_service.login("paroled@example.com", DEFAULT_PASSWORD)

        assert response.outcome == LoginOutcome.ACCESS_GRANTED
        assert user.failed_login_attempts == 0
        assert user.is_locked is False


# Two-factor login


class TestTwoFactorLogin:
    async def test_login_requires_second_factor(self, auth_service, registry, make_user):
        user = await make_user(email="twofa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)

        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        assert challenge.outcome == LoginOutcome.TWO_FACTOR_REQUIRED
        assert challenge.tokens is None
        assert challenge.two_factor_token
        assert await registry.list_active(user.id) == []

        granted = await auth_service.complete_two_factor_login(challenge.two_factor_token, pyotp.TOTP(secret).now())

        assert granted.outcome == LoginOutcome.ACCESS_GRANTED
        assert len(await registry.list_active(user.id)) == 1

    async def test_wrong_code_is_rejected(self, auth_service, make_user):
        user = await make_user(email="twofa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        with pytest.raises(InvalidTwoFactorCode):
            await auth_service.complete_two_factor_login(challenge.two_factor_token, _wrong_totp(secret))

    async def test_backup_code_works_once(self, auth_service, store, make_user):
        user = await make_user(email="twofa@example.com")
        _, backup_codes = await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        granted = await auth_service.complete_two_factor_login(challenge.two_factor_token, backup_codes[0])

        assert granted.outcome == LoginOutcome.ACCESS_GRANTED
        assert await store.count_unused_backup_codes(user) == 9

        next_challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)
        with pytest.raises(InvalidTwoFactorCode):
            await auth_service.complete_two_factor_login(next_challenge.two_factor_token, backup_codes[0])

    async def test_challenge_completes_one_login_only(self, auth_service, registry, make_user):
        user = await make_user(email="twofa@example.com")
        _, backup_codes = await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        await auth_service.complete_two_factor_login(challenge.two_factor_token, backup_codes[0])

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.complete_two_factor_login(challenge.two_factor_token, backup_codes[1])
        assert len(await registry.list_active(user.id)) == 1

    async def test_challenge_is_exhausted_by_wrong_codes(self, auth_service, policy, registry, make_user):
        user = await make_user(email="twofa@example.com")
        secret, backup_codes = await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        for _ in range(policy.token_max_attempts):
            with pytest.raises(InvalidTwoFactorCode):
                await auth_service.complete_two_factor_login(challenge.two_factor_token, _wrong_totp(secret))

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.complete_two_factor_login(challenge.two_factor_token, backup_codes[0])
        assert await registry.list_active(user.id) == []

        fresh = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)
        granted = await auth_service.complete_two_factor_login(fresh.two_factor_token, backup_codes[0])
        assert granted.outcome == LoginOutcome.ACCESS_GRANTED

    async def test_signed_challenge_without_pending_login_is_rejected(self, auth_service, issuer, make_user):
        user = await make_user(email="twofa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.complete_two_factor_login(
                issuer.issue_two_factor_token(user.id, "not-a-pending-login"), pyotp.TOTP(secret).now()
            )

    async def test_challenge_of_another_user_is_rejected(self, auth_service, issuer, make_user):
        owner = await make_user(email="twofa@example.com")
        other = await make_user()
        await _enable_two_factor(auth_service, owner)
        other_secret, _ = await _enable_two_factor(auth_service, other)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)
        jti = issuer.decode(challenge.two_factor_token, TokenType.TWO_FACTOR_PENDING)["jti"]

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.complete_two_factor_login(
                issuer.issue_two_factor_token(other.id, jti), pyotp.TOTP(other_secret).now()
            )

    async def test_challenge_is_not_a_refresh_credential(self, auth_service, make_user):
        user = await make_user(email="twofa@example.com")
        await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.refresh(challenge.two_factor_token)

    async def test_access_token_cannot_complete_login(self, auth_service, issuer, make_user):
        user = await make_user(email="twofa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.complete_two_factor_login(
                issuer.issue_access_token(user.id), pyotp.TOTP(secret).now()
            )

    async def test_challenge_fails_after_two_factor_disabled(self, auth_service, make_user):
        user = await make_user(email="twofa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)
        challenge = await auth_service.login("twofa@example.com", DEFAULT_PASSWORD)

        await auth_service.disable_two_factor(user, pyotp.TOTP(secret).now())

        with pytest.raises(TwoFactorNotEnabled):
            await auth_service.complete_two_factor_login(challenge.two_factor_token, pyotp.TOTP(secret).now())


# Two-factor management


class TestTwoFactorManagement:
    async def test_setup_keeps_two_factor_disabled(self, auth_service, make_user):
        user = await make_user(email="setup@example.com")

        setup = await auth_service.setup_two_factor(user)

        assert user.two_factor_enabled is False
        assert user.two_factor_secret == setup.secret
        assert setup.provisioning_uri.startswith("otpauth://totp/")
        assert f"secret={setup.secret}" in setup.provisioning_uri
        assert "issuer=Authflow" in setup.provisioning_uri

    async def test_verify_enables_and_returns_backup_codes(self, auth_service, notifier, make_user):
        user = await make_user()

        _, codes = await _enable_two_factor(auth_service, user)

        assert user.two_factor_enabled is True
        assert len(codes) == 10
        assert notifier.last().subject == "Security Alert"

    async def test_verify_without_setup(self, auth_service, make_user):
        user = await make_user()

        with pytest.raises(TwoFactorNotConfigured):
            await auth_service.verify_two_factor(user, "123456")

    async def test_verify_with_wrong_code_keeps_disabled(self, auth_service, make_user):
        user = await make_user()
        setup = await auth_service.setup_two_factor(user)

        with pytest.raises(InvalidTwoFactorCode):
            await auth_service.verify_two_factor(user, _wrong_totp(setup.secret))
        assert user.two_factor_enabled is False

    async def test_setup_when_enabled(self, auth_service, make_user):
        user = await make_user()
        await _enable_two_factor(auth_service, user)

        with pytest.raises(TwoFactorAlreadyEnabled):
            await auth_service.setup_two_factor(user)

    async def test_verifying_again_regenerates_backup_codes(self, auth_service, store, make_user):
        user = await make_user()
        secret, first_codes = await _enable_two_factor(auth_service, user)

        second = await auth_service.verify_two_factor(user, pyotp.TOTP(secret).now())

        assert user.two_factor_enabled is True
        assert set(second.backup_codes).isdisjoint(first_codes)
        assert await store.consume_backup_code(user, first_codes[0]) is False

    async def test_disable_clears_secret_and_codes(self, auth_service, store, make_user):
        user = await make_user(email="off@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)

        await auth_service.disable_two_factor(user, pyotp.TOTP(secret).now())

        assert user.two_factor_enabled is False
        assert user.two_factor_secret is None
        assert await store.count_unused_backup_codes(user) == 0
        response = await auth_service.login("off@example.com", DEFAULT_PASSWORD)
        assert response.outcome == LoginOutcome.ACCESS_GRANTED

    async def test_disable_rejects_wrong_code(self, auth_service, make_user):
        user = await make_user()
        secret, _ = await _enable_two_factor(auth_service, user)

        with pytest.raises(InvalidTwoFactorCode):
            await auth_service.disable_two_factor(user, _wrong_totp(secret))
        assert user.two_factor_enabled is True

    async def test_disable_and_regenerate_need_two_factor(self, auth_service, make_user):
        user = await make_user()

        with pytest.raises(TwoFactorNotEnabled):
            await auth_service.disable_two_factor(user, "123456")
        with pytest.raises(TwoFactorNotEnabled):
            await auth_service.regenerate_backup_codes(user)

    async def test_regenerate_backup_codes(self, auth_service, store, make_user):
        user = await make_user()
        _, first_codes = await _enable_two_factor(auth_service, user)

        result = await auth_service.regenerate_backup_codes(user)

        assert len(result.backup_codes) == 10
        assert await store.consume_backup_code(user, first_codes[0]) is False
        assert await store.consume_backup_code(user, result.backup_codes[0]) is True


# Refresh and logout


class TestRefreshAndLogout:
    async def test_refresh_rotates_the_session_credential(self, auth_service, registry, make_user):
        user = await make_user(email="rotate@example.com")
        login = await auth_service.login("rotate@example.com", DEFAULT_PASSWORD)
        old_refresh = login.tokens.refresh_token

        rotated = await auth_service.refresh(old_refresh)

        assert rotated.refresh_token != old_refresh
        assert rotated.expires_in == 15 * 60
        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.refresh(old_refresh)
        assert [s.token for s in await registry.list_active(user.id)] == [rotated.refresh_token]

        again = await auth_service.refresh(rotated.refresh_token)
        assert again.refresh_token != rotated.refresh_token

    async def test_access_token_cannot_refresh(self, auth_service, make_user):
        await make_user(email="rotate@example.com")
        login = await auth_service.login("rotate@example.com", DEFAULT_PASSWORD)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.refresh(login.tokens.access_token)

    async def test_logout_revokes_session(self, auth_service, make_user):
        user = await make_user(email="bye@example.com")
        login = await auth_service.login("bye@example.com", DEFAULT_PASSWORD)

        await auth_service.logout(user, login.tokens.refresh_token)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.refresh(login.tokens.refresh_token)

    async def test_logout_unknown_session_is_fine(self, auth_service, make_user):
        user = await make_user()

        response = await auth_service.logout(user, "not-a-session")

        assert response.message == "Successfully logged out"

    async def test_logout_all(self, auth_service, registry, make_user):
        user = await make_user(email="all@example.com")
        for _ in range(3):
            await auth_service.login("all@example.com", DEFAULT_PASSWORD)

        response = await auth_service.logout_all(user)

        assert response.message == "Logged out from 3 session(s)"
        assert await registry.list_active(user.id) == []


# Password reset and magic link


class TestPasswordReset:
    async def test_reset_replaces_password_and_revokes_sessions(self, auth_service, registry, notifier, make_user):
        user = await make_user(email="forgot@example.com")
        await auth_service.login("forgot@example.com", DEFAULT_PASSWORD)
        await auth_service.login("forgot@example.com", DEFAULT_PASSWORD)

        await auth_service.request_password_reset("forgot@example.com")
        token = notifier.last_link_token()
        assert "/reset-password?token=" in notifier.last().body

        await auth_service.reset_password(token, "BrandNew123")

        assert await registry.list_active(user.id) == []
        with pytest.raises(InvalidCredentials):
            await auth_service.login("forgot@example.com", DEFAULT_PASSWORD)
        response = await auth_service.login("forgot@example.com", "BrandNew123")
        assert response.outcome == LoginOutcome.ACCESS_GRANTED

    async def test_reset_token_is_single_use(self, auth_service, notifier, make_user):
        await make_user(email="forgot@example.com")
        await auth_service.request_password_reset("forgot@example.com")
        token = notifier.last_link_token()
        await auth_service.reset_password(token, "BrandNew123")

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.reset_password(token, "Another123")

    async def test_requests_do_not_reveal_accounts(self, auth_service, notifier, make_user):
        await make_user(email="exists@example.com")

        reset_known = await auth_service.request_password_reset("exists@example.com")
        reset_unknown = await auth_service.request_password_reset("ghost@example.com")
        link_known = await auth_service.request_magic_link("exists@example.com")
        link_unknown = await auth_service.request_magic_link("ghost@example.com")

        assert reset_known == reset_unknown == link_known == link_unknown
        assert reset_known.message == GENERIC_LINK_SENT_MESSAGE
        assert [n.address for n in notifier.sent] == ["exists@example.com", "exists@example.com"]

    async def test_failed_delivery_keeps_the_issued_token(self, session, policy, issuer, make_user, monkeypatch):
        undelivered: list[str] = []

        async def smtp_down(to, subject, body):
            undelivered.append(body)
            raise ConnectionError("smtp down")

        failing_notifier = Notifier(settings)
        monkeypatch.setattr(failing_notifier, "_send_email", smtp_down)
        service = AuthService(session, policy, issuer, failing_notifier, client_url=settings.client_url)
        await make_user(email="offline@example.com")

        response = await service.request_password_reset("offline@example.com")

        assert response.message == GENERIC_LINK_SENT_MESSAGE
        token = re.search(r"token=([0-9a-f]{64})", undelivered[0]).group(1)
        await service.reset_password(token, "BrandNew123")
        assert (await service.login("offline@example.com", "BrandNew123")).outcome == LoginOutcome.ACCESS_GRANTED


class TestMagicLink:
    async def test_magic_link_signs_in(self, auth_service, registry, notifier, make_user):
        user = await make_user(email="magic@example.com")
        await auth_service.request_magic_link("magic@example.com")

        response = await auth_service.verify_magic_link(notifier.last_link_token(), "Tablet")

        assert response.outcome == LoginOutcome.ACCESS_GRANTED
        sessions = await registry.list_active(user.id)
        assert [s.device_info for s in sessions] == ["Tablet"]

    async def test_magic_link_is_single_use(self, auth_service, notifier, make_user):
        await make_user(email="magic@example.com")
        await auth_service.request_magic_link("magic@example.com")
        token = notifier.last_link_token()
        await auth_service.verify_magic_link(token)

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.verify_magic_link(token)

    async def test_magic_link_bypasses_two_factor_by_default(self, auth_service, notifier, make_user):
        user = await make_user(email="magic@example.com")
        await _enable_two_factor(auth_service, user)
        await auth_service.request_magic_link("magic@example.com")

        response = await auth_service.verify_magic_link(notifier.last_link_token())

        assert response.outcome == LoginOutcome.ACCESS_GRANTED

    async def test_magic_link_can_require_two_factor(self, session, policy, issuer, notifier, make_user):
        strict = AuthService(
            session,
            replace(policy, magic_link_requires_two_factor=True),
            issuer,
            notifier,
            client_url=settings.client_url,
        )
        user = await make_user(email="magic@example.com")
        secret, _ = await _enable_two_factor(strict, user)
        await strict.request_magic_link("magic@example.com")
        token = notifier.last_link_token()

        challenge = await strict.verify_magic_link(token)

        assert challenge.outcome == LoginOutcome.TWO_FACTOR_REQUIRED
        assert challenge.tokens is None
        with pytest.raises(InvalidOrExpiredToken):
            await strict.verify_magic_link(token)
        granted = await strict.complete_two_factor_login(challenge.two_factor_token, pyotp.TOTP(secret).now())
        assert granted.outcome == LoginOutcome.ACCESS_GRANTED


# Email and phone verification


class TestEmailVerification:
    async def test_verify_registered_email(self, auth_service, store, notifier):
        await auth_service.register("new@example.com", "Secret123", "New", "User")
        assert "/verify-email?token=" in notifier.last().body

        await auth_service.verify_email(notifier.last_link_token())

        user = await store.get_by_email("new@example.com")
        assert user.is_email_verified is True
        with pytest.raises(AlreadyVerified):
            await auth_service.request_email_verification(user)

    async def test_request_sends_fresh_link(self, auth_service, notifier, make_user):
        user = await make_user()

        await auth_service.request_email_verification(user)
        await auth_service.verify_email(notifier.last_link_token())

        assert user.is_email_verified is True

    async def test_token_kinds_do_not_mix(self, auth_service, notifier, make_user):
        await make_user(email="mix@example.com")
        await auth_service.request_password_reset("mix@example.com")

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.verify_email(notifier.last_link_token())


class TestPhoneVerification:
    async def test_verified_code_commits_number(self, auth_service, notifier, make_user):
        user = await make_user()

        await auth_service.request_phone_otp(user, "+15550001111")
        assert notifier.last(Channel.SMS).address == "+15550001111"
        assert user.phone_number is None

        await auth_service.verify_phone_otp(user, notifier.last_otp())

        assert user.phone_number == "+15550001111"
        assert user.is_phone_verified is True

    async def test_wrong_code_charges_outstanding_otp(self, auth_service, session, notifier, make_user):
        user = await make_user()
        await auth_service.request_phone_otp(user, "+15550001111")
        code = notifier.last_otp()

        for _ in range(3):
            with pytest.raises(InvalidOrExpiredToken):
                await auth_service.verify_phone_otp(user, _other_code(code))

        assert (await _latest_phone_otp(session, user.id)).attempts == 3
        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.verify_phone_otp(user, code)
        assert user.phone_number is None

    async def test_code_of_another_user_is_rejected(self, auth_service, session, notifier, make_user):
        owner = await make_user()
        intruder = await make_user()
        await auth_service.request_phone_otp(owner, "+15550001111")
        code = notifier.last_otp()

        with pytest.raises(InvalidOrExpiredToken):
            await auth_service.verify_phone_otp(intruder, code)

        assert intruder.phone_number is None
        assert (await _latest_phone_otp(session, owner.id)).attempts == 1

        await auth_service.verify_phone_otp(owner, code)
        assert owner.phone_number == "+15550001111"

    async def test_colliding_codes_verify_for_their_owners(self, auth_service, session, make_user, monkeypatch):
        monkeypatch.setattr(token_service, "generate_otp", lambda: "123456")
        alice = await make_user()
        bob = await make_user()
        await auth_service.request_phone_otp(alice, "+15550001111")
        await auth_service.request_phone_otp(bob, "+15550002222")

        await auth_service.verify_phone_otp(alice, "123456")

        assert alice.phone_number == "+15550001111"
        bob_otp = await _latest_phone_otp(session, bob.id)
        assert bob_otp.attempts == 0
        assert bob_otp.used is False

        await auth_service.verify_phone_otp(bob, "123456")
        assert bob.phone_number == "+15550002222"


# Auth endpoints


class TestAuthEndpoints:
    async def test_register(self, client, notifier):
        response = await client.post(
            "/api/auth/register",
            json={"email": "Http@Example.com", "password": "Secret123", "first_name": "Http", "last_name": "User"},
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["outcome"] == "access_granted"
        assert data["user"]["email"] == "http@example.com"
        assert data["tokens"]["token_type"] == "bearer"
        assert "hashed_password" not in data["user"]
        assert notifier.last().address == "http@example.com"

    async def test_register_duplicate(self, client, make_user):
        await make_user(email="taken@example.com")

        response = await client.post(
            "/api/auth/register",
            json={"email": "taken@example.com", "password": "Secret123", "first_name": "Dup", "last_name": "User"},
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"] == "duplicate_identity"

    async def test_register_weak_password(self, client):
        response = await client.post(
            "/api/auth/register",
            json={"email": "weak@example.com", "password": "weakpass", "first_name": "Weak", "last_name": "User"},
        )

        assert response.status_code == 422

    async def test_login_records_user_agent(self, client, registry, make_user):
        user = await make_user(email="agent@example.com")

        response = await client.post("/api/auth/login", json={"email": "agent@example.com", "password": DEFAULT_PASSWORD})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["tokens"]["expires_in"] == 900
        sessions = await registry.list_active(user.id)
        assert [s.device_info for s in sessions] == ["pytest-client"]

    async def test_wrong_password_then_lock(self, client, make_user):
        await make_user(email="locked@example.com", failed_login_attempts=4)

        wrong = await client.post("/api/auth/login", json={"email": "locked@example.com", "password": "WrongPass1"})
        locked = await client.post(
            "/api/auth/login", json={"email": "locked@example.com", "password": DEFAULT_PASSWORD}
        )

        assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
        assert wrong.headers["www-authenticate"] == "Bearer"
        assert wrong.json() == {"detail": "Invalid email or password", "error": "invalid_credentials"}
        assert locked.status_code == status.HTTP_423_LOCKED
        assert locked.json()["error"] == "account_locked"

    async def test_two_factor_login_flow(self, client, auth_service, make_user):
        user = await make_user(email="http2fa@example.com")
        secret, _ = await _enable_two_factor(auth_service, user)

        login = await client.post(
            "/api/auth/login", json={"email": "http2fa@example.com", "password": DEFAULT_PASSWORD}
        )
        assert login.status_code == status.HTTP_200_OK
        assert login.json()["outcome"] == "two_factor_required"
        assert login.json()["tokens"] is None
        pending = login.json()["two_factor_token"]

        profile = await client.get("/api/user/profile", headers={"Authorization": f"Bearer {pending}"})
        assert profile.status_code == status.HTTP_401_UNAUTHORIZED

        granted = await client.post(
            "/api/auth/2fa/login", json={"two_factor_token": pending, "code": pyotp.TOTP(secret).now()}
        )
        assert granted.status_code == status.HTTP_200_OK
        access_token = granted.json()["tokens"]["access_token"]

        profile = await client.get("/api/user/profile", headers={"Authorization": f"Bearer {access_token}"})
        assert profile.status_code == status.HTTP_200_OK
        assert profile.json()["two_factor_enabled"] is True

    async def test_two_factor_login_rejects_access_token(self, client, issuer, make_user):
        user = await make_user()

        response = await client.post(
            "/api/auth/2fa/login", json={"two_factor_token": issuer.issue_access_token(user.id), "code": "123456"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"] == "invalid_or_expired_token"

    async def test_refresh_and_logout(self, client, bearer, make_user):
        user = await make_user(email="cycle@example.com")
        login = await client.post("/api/auth/login", json={"email": "cycle@example.com", "password": DEFAULT_PASSWORD})
        refresh_token = login.json()["tokens"]["refresh_token"]

        refreshed = await client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
        assert refreshed.status_code == status.HTTP_200_OK
        new_refresh = refreshed.json()["refresh_token"]

        replay = await client.post("/api/auth/refresh", json={"refresh_token": refresh_token})
        assert replay.status_code == status.HTTP_401_UNAUTHORIZED

        logout = await client.post("/api/auth/logout", json={"refresh_token": new_refresh}, headers=bearer(user))
        assert logout.status_code == status.HTTP_200_OK

        after = await client.post("/api/auth/refresh", json={"refresh_token": new_refresh})
        assert after.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_refresh_token_is_not_an_access_token(self, client, make_user):
        await make_user(email="types@example.com")
        login = await client.post("/api/auth/login", json={"email": "types@example.com", "password": DEFAULT_PASSWORD})
        refresh_token = login.json()["tokens"]["refresh_token"]

        response = await client.get("/api/user/profile", headers={"Authorization": f"Bearer {refresh_token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_deactivated_user_is_rejected(self, client, bearer, make_user):
        user = await make_user(is_active=False)

        response = await client.get("/api/user/profile", headers=bearer(user))

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "account_inactive"

    async def test_locked_user_is_rejected(self, client, bearer, make_user):
        user = await make_user(is_locked=True, locked_until=utcnow() + timedelta(hours=1), failed_login_attempts=5)

        response = await client.get("/api/user/profile", headers=bearer(user))

        assert response.status_code == status.HTTP_423_LOCKED
        assert response.json()["error"] == "account_locked"

    async def test_password_reset_over_http(self, client, notifier, make_user):
        await make_user(email="reset@example.com")

        requested = await client.post("/api/auth/password-reset/request", json={"email": "reset@example.com"})
        unknown = await client.post("/api/auth/password-reset/request", json={"email": "none@example.com"})
        assert requested.json() == unknown.json() == {"message": GENERIC_LINK_SENT_MESSAGE}

        verified = await client.post(
            "/api/auth/password-reset/verify",
            json={"token": notifier.last_link_token(), "new_password": "BrandNew123"},
        )
        assert verified.status_code == status.HTTP_200_OK

        login = await client.post("/api/auth/login", json={"email": "reset@example.com", "password": "BrandNew123"})
        assert login.status_code == status.HTTP_200_OK

    async def test_magic_link_over_http(self, client, notifier, make_user):
        await make_user(email="link@example.com")

        await client.post("/api/auth/magic-link/request", json={"email": "link@example.com"})
        response = await client.post("/api/auth/magic-link/verify", json={"token": notifier.last_link_token()})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["outcome"] == "access_granted"

    async def test_email_verification_over_http(self, client, bearer, notifier, make_user):
        user = await make_user()

        requested = await client.post("/api/auth/email/request-verification", headers=bearer(user))
        assert requested.status_code == status.HTTP_200_OK

        verified = await client.post("/api/auth/email/verify", json={"token": notifier.last_link_token()})
        assert verified.status_code == status.HTTP_200_OK

        again = await client.post("/api/auth/email/request-verification", headers=bearer(user))
        assert again.status_code == status.HTTP_400_BAD_REQUEST
        assert again.json()["error"] == "already_verified"

    async def test_phone_verification_over_http(self, client, bearer, notifier, make_user):
        user = await make_user()

        requested = await client.post(
            "/api/auth/phone/request-otp", json={"phone_number": "+1 (555) 000-2222"}, headers=bearer(user)
        )
        assert requested.status_code == status.HTTP_200_OK
        assert notifier.last(Channel.SMS).address == "+15550002222"

        verified = await client.post(
            "/api/auth/phone/verify-otp", json={"code": notifier.last_otp()}, headers=bearer(user)
        )
        assert verified.status_code == status.HTTP_200_OK
        assert user.phone_number == "+15550002222"

    async def test_two_factor_setup_over_http(self, client, bearer, make_user):
        user = await make_user()

        setup = await client.post("/api/auth/2fa/setup", headers=bearer(user))
        assert setup.status_code == status.HTTP_200_OK
        secret = setup.json()["secret"]

        verified = await client.post(
            "/api/auth/2fa/verify", json={"code": pyotp.TOTP(secret).now()}, headers=bearer(user)
        )
        assert verified.status_code == status.HTTP_200_OK
        assert len(verified.json()["backup_codes"]) == 10

        again = await client.post("/api/auth/2fa/setup", headers=bearer(user))
        assert again.status_code == status.HTTP_400_BAD_REQUEST
        assert again.json()["error"] == "two_factor_already_enabled"

        regenerated = await client.post("/api/auth/2fa/backup-codes", headers=bearer(user))
        assert regenerated.status_code == status.HTTP_200_OK

        disabled = await client.post(
            "/api/auth/2fa/disable", json={"code": pyotp.TOTP(secret).now()}, headers=bearer(user)
        )
        assert disabled.status_code == status.HTTP_200_OK
        assert user.two_factor_enabled is False

    async def test_long_user_agent_is_clipped(self, client, session, make_user):
        user = await make_user(email="agent@example.com")

        response = await client.post(
            "/api/auth/login",
            json={"email": "agent@example.com", "password": DEFAULT_PASSWORD},
            headers={"User-Agent": "Mozilla/5.0 " + "x" * 1000},
        )

        assert response.status_code == status.HTTP_200_OK
        stored = (await session.execute(select(UserSession.device_info).where(UserSession.user_id == user.id))).scalar_one()
        assert len(stored) == DEVICE_INFO_MAX_LENGTH
        assert stored.startswith("Mozilla/5.0 ")

    async def test_reset_requests_are_rate_limited(self, client, rate_limited):
        allowed = int(settings.rate_limit_link_request.split()[0])

        for _ in range(allowed):
            response = await client.post("/api/auth/password-reset/request", json={"email": "flood@example.com"})
            assert response.status_code == status.HTTP_200_OK

        blocked = await client.post("/api/auth/password-reset/request", json={"email": "flood@example.com"})
        assert blocked.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert blocked.json() == {"detail": "Rate limit exceeded"}

    async def test_logout_all_over_http(self, client, bearer, registry, make_user):
        user = await make_user(email="everywhere@example.com")
        for _ in range(2):
            await client.post("/api/auth/login", json={"email": "everywhere@example.com", "password": DEFAULT_PASSWORD})

        response = await client.post("/api/auth/logout-all", headers=bearer(user))

        assert response.status_code == status.HTTP_200_OK
        assert await registry.list_active(user.id) == []
