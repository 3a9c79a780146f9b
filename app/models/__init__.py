from app.models.identity import (  # noqa: F401
    MfaCodePurpose,
    MfaEnrollment,
    MfaMethod,
    Principal,
    PrincipalRole,
)
from app.models.library import ApprovalStatus, Report  # noqa: F401
