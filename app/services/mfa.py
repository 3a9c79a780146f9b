"""Two-factor enrollment and verification.

Enrollment moves through ``unenrolled -> pending -> enabled`` and back to
disabled on an explicit, password-confirmed request. Every code mismatch
surfaces as the same :class:`InvalidCode`, whatever the underlying cause.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import InvalidCode, InvalidCredentials, SecretNotFound
from app.models.identity import MfaCodePurpose, MfaEnrollment, MfaMethod, Principal
from app.observability import MFA_VERIFICATIONS
from app.services import identity, totp
from app.services.attempts import AttemptLimiter, AttemptPolicy
from app.services.common import as_uuid
from app.services.dispatch import CodeDispatcher, dispatcher, mask_destination
from app.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

_PHONE_PATTERN = re.compile(r"^\+?[0-9]{6,15}$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    normalized = re.sub(r"[\s().-]", "", phone)
    if not _PHONE_PATTERN.match(normalized):
        raise HTTPException(status_code=400, detail="Invalid phone number")
    return normalized


def _hash_code(code: str) -> str:
    return hmac.new(
        settings.jwt_secret_key.encode("utf-8"), code.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def _generate_numeric_code() -> str:
    return f"{secrets.randbelow(10**totp.DIGITS):0{totp.DIGITS}d}"


def _parse_method(method: str | MfaMethod) -> MfaMethod:
    if isinstance(method, MfaMethod):
        return method
    try:
        return MfaMethod(method)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid method: {method}")


class MfaService:
    def __init__(
        self,
        code_dispatcher: CodeDispatcher,
        limiter: AttemptLimiter,
        locks: KeyedLocks | None = None,
        issuer: str = settings.mfa_issuer,
        window_steps: int = settings.mfa_window_steps,
        sms_code_ttl_seconds: int = settings.mfa_sms_code_ttl_seconds,
        retain_secret_on_disable: bool = settings.mfa_retain_secret_on_disable,
    ) -> None:
        self.dispatcher = code_dispatcher
        self.limiter = limiter
        self.locks = locks or KeyedLocks()
        self.issuer = issuer
        self.window_steps = window_steps
        self.sms_code_ttl = timedelta(seconds=sms_code_ttl_seconds)
        self.retain_secret_on_disable = retain_secret_on_disable

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _principal(db: Session, principal_id) -> Principal:
        principal = identity.get_active_principal(db, principal_id)
        if principal is None:
            raise HTTPException(status_code=404, detail="Principal not found")
        return principal

    @staticmethod
    def _enrollment(db: Session, principal_id) -> MfaEnrollment | None:
        return db.scalars(
            select(MfaEnrollment).where(
                MfaEnrollment.principal_id == as_uuid(principal_id)
            )
        ).first()

    def _issue_code(
        self, enrollment: MfaEnrollment, purpose: MfaCodePurpose
    ) -> str:
        code = _generate_numeric_code()
        enrollment.pending_code_hash = _hash_code(code)
        enrollment.pending_code_purpose = purpose
        enrollment.pending_code_expires_at = _now() + self.sms_code_ttl
        return code

    def _matches_pending_code(
        self, enrollment: MfaEnrollment, code: str, purpose: MfaCodePurpose
    ) -> bool:
        expected = enrollment.pending_code_hash or ""
        submitted = _hash_code(str(code or "").strip())
        # compare first so that every branch costs the same
        matched = hmac.compare_digest(expected, submitted)
        expires_at = _aware(enrollment.pending_code_expires_at)
        return (
            matched
            and bool(expected)
            and enrollment.pending_code_purpose == purpose
            and expires_at is not None
            and expires_at > _now()
        )

    @staticmethod
    def _clear_pending_code(enrollment: MfaEnrollment) -> None:
        enrollment.pending_code_hash = None
        enrollment.pending_code_purpose = None
        enrollment.pending_code_expires_at = None

    def _fail(self, principal_id, flow: str, method: str) -> InvalidCode:
        self.limiter.record_failure(str(principal_id))
        MFA_VERIFICATIONS.labels(flow, method, "rejected").inc()
        logger.info("Rejected %s code for principal %s", flow, principal_id)
        return InvalidCode()

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def start_setup(
        self,
        db: Session,
        principal_id,
        method: str | MfaMethod,
        phone_number: str | None = None,
    ) -> dict:
        method = _parse_method(method)
        with self.locks.hold(str(principal_id)):
            principal = self._principal(db, principal_id)
            enrollment = self._enrollment(db, principal.id)
            if enrollment and enrollment.enabled:
                raise HTTPException(
                    status_code=409,
                    detail="Two-factor authentication is already enabled",
                )
            phone = None
            if method == MfaMethod.sms:
                phone = _normalize_phone(phone_number or principal.phone)
                if not phone:
                    raise HTTPException(
                        status_code=400,
                        detail="A phone number is required for SMS verification",
                    )
            if enrollment is None:
                enrollment = MfaEnrollment(principal_id=principal.id, method=method)
                db.add(enrollment)
            secret = totp.generate_secret()
            enrollment.method = method
            enrollment.secret = secret
            enrollment.enabled = False
            enrollment.phone_number = phone
            enrollment.verified_at = None
            enrollment.last_used_step = None
            self._clear_pending_code(enrollment)

            code = None
            if method == MfaMethod.sms:
                code = self._issue_code(enrollment, MfaCodePurpose.setup)
            db.commit()
            logger.info(
                "Started %s two-factor setup for principal %s",
                method.value,
                principal.id,
            )

        if method == MfaMethod.app:
            uri = totp.provisioning_uri(secret, principal.email, self.issuer)
            return {
                "method": method.value,
                "secret": secret,
                "otpauth_url": uri,
                "qr_code": totp.qr_data_url(uri),
            }
        self.dispatcher.send_code(phone, code, MfaCodePurpose.setup.value)
        return {"method": method.value, "phone": mask_destination(phone)}

    def confirm_setup(self, db: Session, principal_id, code: str) -> MfaEnrollment:
        key = str(principal_id)
        with self.locks.hold(key):
            enrollment = self._enrollment(db, principal_id)
            if enrollment is None or not enrollment.secret:
                raise SecretNotFound()
            self.limiter.check(key)
            method = enrollment.method.value
            if enrollment.method == MfaMethod.app:
                ok = totp.verify(
                    enrollment.secret, code, window_steps=self.window_steps
                )
            else:
                ok = self._matches_pending_code(
                    enrollment, code, MfaCodePurpose.setup
                )
            if not ok:
                raise self._fail(principal_id, "setup", method)

            enrollment.enabled = True
            enrollment.verified_at = _now()
            self._clear_pending_code(enrollment)
            db.commit()
            db.refresh(enrollment)
            self.limiter.reset(key)
            MFA_VERIFICATIONS.labels("setup", method, "accepted").inc()
            logger.info("Enabled %s two-factor for principal %s", method, principal_id)
            return enrollment

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def send_login_challenge(self, db: Session, principal_id) -> None:
        """Send a fresh SMS login code; silently does nothing otherwise."""
        with self.locks.hold(str(principal_id)):
            enrollment = self._enrollment(db, principal_id)
            if (
                enrollment is None
                or not enrollment.enabled
                or enrollment.method != MfaMethod.sms
                or not enrollment.phone_number
            ):
                logger.info(
                    "No SMS login challenge issued for principal %s", principal_id
                )
                return
            code = self._issue_code(enrollment, MfaCodePurpose.login)
            phone = enrollment.phone_number
            db.commit()
        self.dispatcher.send_code(phone, code, MfaCodePurpose.login.value)

    def verify_login(
        self, db: Session, principal_id, code: str, method: str | MfaMethod
    ) -> None:
        key = str(principal_id)
        method = _parse_method(method)
        with self.locks.hold(key):
            self.limiter.check(key)
            enrollment = self._enrollment(db, principal_id)
            ok = False
            step = None
            if enrollment is not None and enrollment.enabled:
                if method == MfaMethod.app:
                    step = totp.match_step(
                        enrollment.secret or "", code, window_steps=self.window_steps
                    )
                    # an accepted code is spent for every step up to its own
                    ok = step is not None and (
                        enrollment.last_used_step is None
                        or step > enrollment.last_used_step
                    )
                else:
                    ok = self._matches_pending_code(
                        enrollment, code, MfaCodePurpose.login
                    )
                ok = ok and enrollment.method == method
            if not ok:
                raise self._fail(principal_id, "login", method.value)

            if method == MfaMethod.sms:
                self._clear_pending_code(enrollment)
            else:
                enrollment.last_used_step = step
            enrollment.last_used_at = _now()
            db.commit()
            self.limiter.reset(key)
            MFA_VERIFICATIONS.labels("login", method.value, "accepted").inc()

    # ------------------------------------------------------------------
    # Disable / status
    # ------------------------------------------------------------------

    def disable(self, db: Session, principal_id, password: str) -> MfaEnrollment:
        key = str(principal_id)
        with self.locks.hold(key):
            self.limiter.check(key)
            if not identity.verify_password(db, principal_id, password):
                self.limiter.record_failure(key)
                logger.info(
                    "Rejected two-factor disable for principal %s", principal_id
                )
                raise InvalidCredentials()
            enrollment = self._enrollment(db, principal_id)
            if enrollment is None:
                raise SecretNotFound()
            enrollment.enabled = False
            enrollment.verified_at = None
            self._clear_pending_code(enrollment)
            if not self.retain_secret_on_disable:
                enrollment.secret = None
                enrollment.last_used_step = None
            db.commit()
            db.refresh(enrollment)
            self.limiter.reset(key)
            logger.info("Disabled two-factor for principal %s", principal_id)
            return enrollment

    def status(self, db: Session, principal_id) -> dict:
        enrollment = self._enrollment(db, principal_id)
        if enrollment is None:
            return {"enabled": False, "method": None, "phone": None}
        phone = enrollment.phone_number
        return {
            "enabled": bool(enrollment.enabled),
            "method": enrollment.method.value,
            "phone": mask_destination(phone) if phone else None,
        }

    def is_enabled(self, db: Session, principal_id) -> bool:
        enrollment = self._enrollment(db, principal_id)
        return bool(enrollment and enrollment.enabled)

    def enabled_method(self, db: Session, principal_id) -> MfaMethod | None:
        enrollment = self._enrollment(db, principal_id)
        if enrollment and enrollment.enabled:
            return enrollment.method
        return None


def build_mfa_service() -> MfaService:
    return MfaService(
        code_dispatcher=dispatcher,
        limiter=AttemptLimiter(AttemptPolicy.from_settings()),
    )
