import logging
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import InvalidCredentials
from app.models.identity import Principal
from app.services.common import as_uuid

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
MFA_CHALLENGE_TOKEN_TYPE = "mfa_challenge"


def hash_password(password: str) -> str:
    # bcrypt only reads the first 72 bytes
    password_bytes = password.encode("utf-8")[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=settings.bcrypt_rounds))
    return hashed.decode("utf-8")


def _check_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def get_active_principal(db: Session, principal_id) -> Principal | None:
    try:
        pid = as_uuid(principal_id)
    except ValueError:
        return None
    principal = db.get(Principal, pid)
    if not principal or not principal.is_active:
        return None
    return principal


def verify_password(db: Session, principal_id, password: str) -> bool:
    principal = get_active_principal(db, principal_id)
    if principal is None:
        return False
    return _check_password(password, principal.password_hash)


def authenticate(db: Session, email: str, password: str) -> Principal:
    principal = db.scalars(
        select(Principal).where(Principal.email == email.strip().lower())
    ).first()
    if not principal or not principal.is_active:
        raise InvalidCredentials()
    if not _check_password(password, principal.password_hash):
        raise InvalidCredentials()
    return principal


def _encode(claims: dict, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = dict(claims)
    to_encode.update({"iat": now, "exp": now + expires_delta, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(principal: Principal, mfa: bool) -> str:
    return _encode(
        {
            "sub": str(principal.id),
            "role": principal.role.value,
            "mfa": mfa,
            "type": ACCESS_TOKEN_TYPE,
        },
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_mfa_challenge_token(principal: Principal, method: str) -> str:
    return _encode(
        {
            "sub": str(principal.id),
            "method": method,
            "type": MFA_CHALLENGE_TOKEN_TYPE,
        },
        timedelta(minutes=settings.mfa_challenge_expire_minutes),
    )


def decode_token(token: str, expected_type: str) -> dict:
    try:
        claims = jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        raise InvalidCredentials("Could not validate credentials")
    if claims.get("type") != expected_type or not claims.get("sub"):
        raise InvalidCredentials("Could not validate credentials")
    return claims
