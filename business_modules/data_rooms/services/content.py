"""Content providers handing delivered documents over to object storage."""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.utils.module_loading import import_string

from ..entities import ACTION_DOWNLOAD
from ..exceptions import ContentUnavailable
from .room_directory import DocumentInfo

logger = logging.getLogger(__name__)


def is_pdf(document: DocumentInfo) -> bool:
    return (
        'pdf' in (document.file_type or '').lower()
        or (document.file_name or '').lower().endswith('.pdf')
        or (document.name or '').lower().endswith('.pdf')
    )


def content_disposition(document: DocumentInfo, action: str) -> str:
    if action != ACTION_DOWNLOAD:
        return 'inline'
    file_name = (document.file_name or document.name or 'document')
    file_name = file_name.replace('"', '').replace('\r', '').replace('\n', '').strip() or 'document'
    return f'attachment; filename="{file_name}"'


class BaseContentUrlProvider:
    """Base content provider"""

    def get_url(self, document: DocumentInfo, action: str) -> str:
        """Get a short-lived URL serving the document for view or download."""
        raise NotImplementedError

    def get_content(self, document: DocumentInfo) -> bytes:
        """Fetch the stored bytes of a document."""
        raise NotImplementedError


class S3ContentUrlProvider(BaseContentUrlProvider):
    """Presigned S3 URLs, or the object itself when it must be rewritten."""

    def __init__(self, bucket_name: Optional[str] = None, expiration: Optional[int] = None):
        self.s3_client = boto3.client(
            's3',
            region_name=getattr(settings, 'DATA_ROOMS_TABLE_REGION', None)
        )
        self.bucket_name = bucket_name or settings.DATA_ROOMS_S3_BUCKET
        self.expiration = expiration or getattr(settings, 'DATA_ROOMS_PRESIGNED_URL_TTL', 300)

    def get_url(self, document, action):
        if not document.storage_key:
            raise ContentUnavailable(f"Document {document.id} has no stored content")

        params = {
            'Bucket': self.bucket_name,
            'Key': document.storage_key,
            'ResponseContentDisposition': content_disposition(document, action),
        }
        if document.file_type:
            params['ResponseContentType'] = document.file_type

        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params=params,
                ExpiresIn=self.expiration
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to generate presigned URL for {document.id}: {e}")
            raise ContentUnavailable(f"Failed to generate presigned URL: {e}")

    def get_content(self, document):
        if not document.storage_key:
            raise ContentUnavailable(f"Document {document.id} has no stored content")

        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=document.storage_key)
            return response['Body'].read()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to fetch {document.id} from storage: {e}")
            raise ContentUnavailable(f"Failed to fetch document content: {e}")


def get_content_provider() -> BaseContentUrlProvider:
    """Get the configured content provider."""
    path = getattr(
        settings,
        'DATA_ROOMS_CONTENT_PROVIDER',
        'business_modules.data_rooms.services.content.S3ContentUrlProvider'
    )
    return import_string(path)()
