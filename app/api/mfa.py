from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import AuthContext, get_db, get_mfa_service, require_user_auth
from app.schemas.mfa import (
    MfaCodeRequest,
    MfaDisableRequest,
    MfaSetupRequest,
    MfaSetupResponse,
    MfaStatusRead,
)
from app.services.mfa import MfaService

router = APIRouter(prefix="/auth/mfa", tags=["mfa"])


@router.get("", response_model=MfaStatusRead)
def get_status(
    auth: AuthContext = Depends(require_user_auth),
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    return mfa.status(db, auth.principal.id)


@router.post("/setup", response_model=MfaSetupResponse)
def start_setup(
    payload: MfaSetupRequest,
    auth: AuthContext = Depends(require_user_auth),
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    return mfa.start_setup(db, auth.principal.id, payload.method, payload.phone_number)


@router.post("/confirm", response_model=MfaStatusRead)
def confirm_setup(
    payload: MfaCodeRequest,
    auth: AuthContext = Depends(require_user_auth),
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    mfa.confirm_setup(db, auth.principal.id, payload.code)
    return mfa.status(db, auth.principal.id)


@router.post("/disable", response_model=MfaStatusRead)
def disable(
    payload: MfaDisableRequest,
    auth: AuthContext = Depends(require_user_auth),
    db: Session = Depends(get_db),
    mfa: MfaService = Depends(get_mfa_service),
):
    mfa.disable(db, auth.principal.id, payload.password)
    return mfa.status(db, auth.principal.id)
