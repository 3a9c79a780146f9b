import logging
import uuid
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import StorageUnavailable
from app.models.library import ApprovalStatus, Report
from app.services.common import as_uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentMeta:
    id: uuid.UUID
    title: str
    owner_id: uuid.UUID
    approval_status: ApprovalStatus
    public_access: bool
    file_name: str
    mime_type: str
    storage_key: str | None


class StorageService:
    @staticmethod
    def is_configured() -> bool:
        return bool(
            settings.s3_endpoint_url
            and settings.s3_access_key
            and settings.s3_secret_key
        )

    @staticmethod
    def _get_client():  # type: ignore[return]
        if not StorageService.is_configured():
            raise RuntimeError(
                "S3 storage is not configured. "
                "Set S3_ENDPOINT_URL, S3_ACCESS_KEY, and S3_SECRET_KEY."
            )
        return boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def read_object(storage_key: str) -> bytes:
        client = StorageService._get_client()
        response = client.get_object(Bucket=settings.s3_bucket_name, Key=storage_key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()


storage = StorageService()


class DocumentRegistry:
    """Read-only view over stored reports and their canonical bytes."""

    def __init__(self, db: Session, object_storage: StorageService = storage):
        self.db = db
        self.storage = object_storage

    def get_meta(self, document_id) -> DocumentMeta | None:
        try:
            report_id = as_uuid(document_id)
        except ValueError:
            return None
        report = self.db.get(Report, report_id)
        if report is None:
            return None
        return DocumentMeta(
            id=report.id,
            title=report.title,
            owner_id=report.owner_id,
            approval_status=report.approval_status,
            public_access=bool(report.public_access),
            file_name=report.file_name,
            mime_type=report.mime_type,
            storage_key=report.storage_key,
        )

    def get_bytes(self, meta: DocumentMeta) -> bytes:
        if not meta.storage_key:
            raise StorageUnavailable(log_detail=f"document {meta.id} has no storage key")
        try:
            return self.storage.read_object(meta.storage_key)
        except (BotoCoreError, ClientError, RuntimeError) as e:
            logger.error(
                "Failed to read document %s from storage: %s", meta.id, e
            )
            raise StorageUnavailable(log_detail=str(e))
