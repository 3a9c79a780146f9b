import enum
import logging
from dataclasses import dataclass

from app.errors import DocumentNotFound, NotApproved, NotPublic
from app.models.identity import Principal
from app.models.library import ApprovalStatus
from app.services.registry import DocumentMeta, DocumentRegistry

logger = logging.getLogger(__name__)

GENERIC_DENIAL_MESSAGE = "Document unavailable"


class DenyReason(enum.Enum):
    not_found = "not_found"
    not_approved = "not_approved"
    not_public = "not_public"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DenyReason | None = None
    meta: DocumentMeta | None = None
    is_owner: bool = False


def authorize(
    registry: DocumentRegistry, principal: Principal, document_id
) -> AccessDecision:
    meta = registry.get_meta(document_id)
    if meta is None:
        return AccessDecision(allowed=False, reason=DenyReason.not_found)
    is_owner = meta.owner_id == principal.id
    if meta.approval_status != ApprovalStatus.approved:
        return AccessDecision(
            allowed=False, reason=DenyReason.not_approved, meta=meta, is_owner=is_owner
        )
    if not (meta.public_access or is_owner or principal.is_privileged):
        return AccessDecision(
            allowed=False, reason=DenyReason.not_public, meta=meta, is_owner=is_owner
        )
    return AccessDecision(allowed=True, meta=meta, is_owner=is_owner)


_DENIAL_ERRORS = {
    DenyReason.not_found: DocumentNotFound,
    DenyReason.not_approved: NotApproved,
    DenyReason.not_public: NotPublic,
}


def enforce(
    registry: DocumentRegistry, principal: Principal, document_id
) -> DocumentMeta:
    """Authorize or raise the matching denial.

    Owners see the specific reason; everyone else gets a generic message
    while the error code still identifies the denial.
    """
    decision = authorize(registry, principal, document_id)
    if decision.allowed:
        return decision.meta
    logger.info(
        "Denied document %s to principal %s: %s",
        document_id,
        principal.id,
        decision.reason.value,
    )
    error_cls = _DENIAL_ERRORS[decision.reason]
    if decision.is_owner:
        raise error_cls()
    raise error_cls(GENERIC_DENIAL_MESSAGE)
