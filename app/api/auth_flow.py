from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_mfa_service
from app.errors import InvalidCredentials
from app.models.identity import MfaMethod, Principal
from app.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MfaLoginRequest,
    PrincipalRead,
    SmsChallengeRequest,
)
from app.services import identity
from app.services.mfa import MfaService

router = APIRouter(prefix="/auth", tags=["auth"])


def _principal_read(principal: Principal) -> PrincipalRead:
    return PrincipalRead(
        id=principal.id,
        email=principal.email,
        role=principal.role.value,
        first_name=principal.first_name,
        last_name=principal.last_name,
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    principal = identity.authenticate(db, payload.email, payload.password)
    method = mfa.enabled_method(db, principal.id)
    if method is None:
        return LoginResponse(
            access_token=identity.create_access_token(principal, mfa=False),
            principal=_principal_read(principal),
        )
    if method == MfaMethod.sms:
        mfa.send_login_challenge(db, principal.id)
    return LoginResponse(
        mfa_required=True,
        mfa_token=identity.create_mfa_challenge_token(principal, method.value),
        method=method.value,
    )


@router.post("/login/mfa", response_model=LoginResponse)
def login_mfa(
    payload: MfaLoginRequest,
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    claims = identity.decode_token(
        payload.mfa_token, identity.MFA_CHALLENGE_TOKEN_TYPE
    )
    principal_id = claims["sub"]
    mfa.verify_login(db, principal_id, payload.code, payload.method or claims["method"])
    principal = identity.get_active_principal(db, principal_id)
    if principal is None:
        raise InvalidCredentials()
    return LoginResponse(
        access_token=identity.create_access_token(principal, mfa=True),
        principal=_principal_read(principal),
    )


@router.post("/login/mfa/sms", status_code=status.HTTP_202_ACCEPTED)
def resend_sms_challenge(
    payload: SmsChallengeRequest,
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    claims = identity.decode_token(
        payload.mfa_token, identity.MFA_CHALLENGE_TOKEN_TYPE
    )
    mfa.send_login_challenge(db, claims["sub"])
    return {"message": "If SMS verification is enabled, a code has been sent"}
