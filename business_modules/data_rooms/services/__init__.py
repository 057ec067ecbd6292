"""Data room sharing services."""

from .access_grant_service import AccessGrantService, resolve_identity
from .access_log_service import AccessLogService
from .link_service import SharedLinkService, compute_effective_status
from .link_validator import LinkValidator
from .nda_service import NdaService
from .watermark_service import WatermarkOptions, WatermarkService

__all__ = [
    'AccessGrantService',
    'AccessLogService',
    'LinkValidator',
    'NdaService',
    'SharedLinkService',
    'WatermarkOptions',
    'WatermarkService',
    'compute_effective_status',
    'resolve_identity',
]
