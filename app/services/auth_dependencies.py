import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.errors import InvalidCredentials
from app.models.identity import Principal, PrincipalRole
from app.services import identity

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    principal: Principal
    mfa: bool
    claims: dict


def require_user_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = identity.decode_token(credentials.credentials, identity.ACCESS_TOKEN_TYPE)
    principal = identity.get_active_principal(db, claims["sub"])
    if principal is None:
        raise InvalidCredentials("Could not validate credentials")
    return AuthContext(principal=principal, mfa=bool(claims.get("mfa")), claims=claims)


def require_role(*roles: str):
    allowed = {PrincipalRole(role) for role in roles}

    def dependency(auth: AuthContext = Depends(require_user_auth)) -> AuthContext:
        if auth.principal.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient role")
        if (
            settings.mfa_required_for_privileged
            and auth.principal.is_privileged
            and not auth.mfa
        ):
            logger.info(
                "Privileged principal %s presented a token without two-factor",
                auth.principal.id,
            )
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "mfa_required",
                    "message": "Two-factor authentication is required for this role",
                },
            )
        return auth

    return dependency
