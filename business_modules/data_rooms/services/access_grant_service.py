"""
Access grant service.

Mints the short-lived, single-use grants that stand between a validated
view/download request and the actual document content, and redeems them.

A grant lives at ``SLINKACCESS#{id}`` / ``META`` with a ``ttl`` attribute;
the table evicts it once the ttl passes, so no cleanup job is involved.
Redemption marks it consumed with a conditional write, so each grant
delivers the document at most once.
"""

import hashlib
import uuid
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from .. import keys
from ..entities import (
    ACCESS_DENIED, ACTION_DOWNLOAD, ACTION_VIEW, EVENT_GRANT_ISSUED, NDA_REQUIRED, NOT_FOUND,
    AccessIdentity, SharedLink, ShortLivedAccessGrant, to_iso,
)
from ..exceptions import AccessGrantError, ConditionalCheckFailed, PersistenceError
from .access_log_service import DOWNLOAD_DOCUMENT, VIEW_DOCUMENT, AccessLogService
from .base import DataRoomService, mask_secret
from .content import BaseContentUrlProvider, get_content_provider, is_pdf
from .link_service import SharedLinkService
from .link_validator import LinkValidator
from .nda_service import NdaService
from .room_directory import BaseRoomDirectory, DocumentInfo, get_room_directory
from .watermark_service import WatermarkOptions, WatermarkService

GUEST_NAME = 'Guest'
DOCUMENT_NOT_FOUND = 'document_not_found'
CONSUMED = 'consumed'
INVALID_ACTION = 'invalid_action'
GRANT_ID_ATTEMPTS = 3


def resolve_identity(user=None, user_name: Optional[str] = None, user_email: Optional[str] = None) -> AccessIdentity:
    """
    Pick the identity a grant is minted for.

    A verified session user wins over a self-asserted external name/email.
    """
    if user is not None and getattr(user, 'is_authenticated', False) and getattr(user, 'email', ''):
        full_name = user.get_full_name() if hasattr(user, 'get_full_name') else ''
        return AccessIdentity(
            user_name=full_name or user.email,
            user_email=user.email.lower(),
            verified=True,
        )
    return AccessIdentity(
        user_name=(user_name or '').strip() or GUEST_NAME,
        user_email=(user_email or '').strip().lower() or None,
        verified=False,
    )


def external_user_id(email: Optional[str]) -> str:
    digest = hashlib.sha256((email or 'unknown').strip().lower().encode('utf-8')).hexdigest()
    return f"external_unverified:{digest[:16]}"


@dataclass
class Redemption:
    """
    A consumed grant together with what it resolved to.

    Exactly one of ``url`` (redirect target) and ``content`` (watermarked
    PDF bytes to serve directly) is set.
    """
    grant: ShortLivedAccessGrant
    link: SharedLink
    document: DocumentInfo
    url: Optional[str] = None
    content: Optional[bytes] = None


class AccessGrantService(DataRoomService):
    """Service for issuing and redeeming short-lived access grants."""

    def __init__(
        self,
        backend=None,
        context=None,
        links: Optional[SharedLinkService] = None,
        validator: Optional[LinkValidator] = None,
        nda: Optional[NdaService] = None,
        watermarks: Optional[WatermarkService] = None,
        directory: Optional[BaseRoomDirectory] = None,
        content: Optional[BaseContentUrlProvider] = None,
    ):
        super().__init__(backend, context)
        self.links = links or SharedLinkService(self.backend, self.context)
        self.validator = validator or LinkValidator(self.backend, self.context, links=self.links)
        self.nda = nda or NdaService(self.backend, self.context)
        self.watermarks = watermarks or WatermarkService()
        self.directory = directory or get_room_directory()
        self._content = content
        self.ttl_seconds = getattr(settings, 'DATA_ROOMS_ACCESS_GRANT_TTL', 300)

    @property
    def access_log(self) -> AccessLogService:
        return self.links.access_log

    @property
    def content(self) -> BaseContentUrlProvider:
        if self._content is None:
            self._content = get_content_provider()
        return self._content

    def issue_grant(
        self,
        token: str,
        document_id: str,
        action: str,
        identity: AccessIdentity,
        password: Optional[str] = None
    ) -> ShortLivedAccessGrant:
        """
        Authorize a view or download and mint a grant for it.

        The NDA is always verified here, never taken from the client.

        Raises:
            AccessGrantError: With the reason the request was refused
        """
        validation = self.validator.validate_and_record(
            token, user_email=identity.user_email, password=password, skip_nda_check=True
        )
        if not validation.valid:
            raise AccessGrantError(
                validation.error,
                status_code=404 if validation.error == NOT_FOUND else 403,
                requires_password=bool(validation.requires_password),
            )
        link = validation.link

        document = self._authorize_and_record(link, document_id, action, identity.user_email)

        created_at = self.now()
        tracking_code = None
        if link.permissions.apply_watermark:
            tracking_code = self.watermarks.generate_tracking_code(WatermarkOptions(
                user_name=identity.user_name,
                user_email=identity.user_email or 'unknown',
                access_timestamp=created_at,
                document_id=document.id,
            ))

        grant = ShortLivedAccessGrant(
            id=f"slink-access-{uuid.uuid4()}",
            link_id=link.id,
            room_id=link.room_id,
            shared_token=token,
            document_id=document.id,
            action=action,
            identity=identity,
            created_at=created_at,
            ttl=int(created_at.timestamp()) + self.ttl_seconds,
            watermark_applied=link.permissions.apply_watermark,
            watermark_tracking_code=tracking_code,
        )
        self._put_grant(grant)

        self.access_log.log_link_access(
            link,
            True,
            user_email=identity.user_email,
            event=EVENT_GRANT_ISSUED,
            document_id=document.id,
            action=action,
            watermark_tracking_code=tracking_code,
        )
        self._log_operation(
            'Access grant issued',
            {
                'link_id': link.id,
                'document_id': document.id,
                'action': action,
                'grant': mask_secret(grant.id, 21),
                'verified': identity.verified,
            },
            actor=identity.user_email
        )
        return grant

    def get_grant(self, access_id: str) -> Optional[ShortLivedAccessGrant]:
        item = self.backend.get_item(keys.access_grant_pk(access_id), keys.META)
        return ShortLivedAccessGrant.from_item(item) if item else None

    def redeem_grant(
        self,
        token: str,
        access_id: str,
        session_identity: Optional[AccessIdentity] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Redemption:
        """
        Consume a grant and produce the content it stands for.

        Watermarked PDFs are stamped for the viewer and returned as bytes;
        everything else resolves to a presigned storage URL.

        The link, the NDA and the link permissions are checked again, since
        any of them may have changed after the grant was issued.

        Raises:
            AccessGrantError: ``not_found`` (404) for unknown or evicted grants,
                ``consumed`` (410) for grants already redeemed, or the reason
                the re-check failed
        """
        grant = self.get_grant(access_id)
        if grant is None or grant.shared_token != token:
            raise AccessGrantError(NOT_FOUND, 'Access not found', status_code=404)
        if grant.consumed_at is not None:
            raise AccessGrantError(CONSUMED, 'Access already used', status_code=410)

        consumed_at = self.now()
        try:
            self.backend.update_item(
                keys.access_grant_pk(access_id),
                keys.META,
                {'consumedAt': to_iso(consumed_at)},
                condition_absent='consumedAt'
            )
        except ConditionalCheckFailed:
            raise AccessGrantError(CONSUMED, 'Access already used', status_code=410)
        grant.consumed_at = consumed_at

        validation = self.validator.validate_and_record(
            token,
            user_email=grant.identity.user_email,
            skip_nda_check=True,
            skip_password_check=True,
        )
        if not validation.valid:
            raise AccessGrantError(
                validation.error, status_code=404 if validation.error == NOT_FOUND else 403
            )
        link = validation.link
        document = self._authorize_and_record(
            link, grant.document_id, grant.action, grant.identity.user_email
        )

        if session_identity is not None and session_identity.verified:
            actor_id = session_identity.user_email
            actor = session_identity
        else:
            actor_id = external_user_id(grant.identity.user_email)
            actor = grant.identity

        self.access_log.log_activity(
            link.room_id,
            DOWNLOAD_DOCUMENT if grant.action == ACTION_DOWNLOAD else VIEW_DOCUMENT,
            user_id=actor_id,
            user_name=actor.user_name,
            user_email=actor.user_email or '',
            document_id=document.id,
            document_name=document.name,
            ip_address=ip_address,
            user_agent=user_agent,
            access_method='shared_link',
            shared_link_id=link.id,
            watermark_applied=grant.watermark_applied,
            watermark_tracking_code=grant.watermark_tracking_code,
        )

        redemption = Redemption(grant=grant, link=link, document=document)
        if grant.watermark_applied and is_pdf(document):
            redemption.content = self._watermarked_pdf(link, document, grant, actor)
        else:
            redemption.url = self.content.get_url(document, grant.action)

        self._log_operation(
            'Access grant redeemed',
            {
                'link_id': link.id,
                'document_id': document.id,
                'action': grant.action,
                'watermarked': redemption.content is not None,
            },
            actor=actor.user_email
        )
        return redemption

    def _watermarked_pdf(
        self,
        link: SharedLink,
        document: DocumentInfo,
        grant: ShortLivedAccessGrant,
        actor: AccessIdentity
    ) -> bytes:
        room = self.directory.get_room(link.room_id)
        options = WatermarkOptions(
            user_name=actor.user_name,
            user_email=actor.user_email or 'unknown',
            access_timestamp=grant.created_at,
            document_id=document.id,
            company_name=room.fund_name if room else None,
            room_name=room.name if room else None,
        )
        return self.watermarks.apply_pdf_watermark(
            self.content.get_content(document),
            options,
            tracking_code=grant.watermark_tracking_code,
        )

    def _authorize_and_record(
        self,
        link: SharedLink,
        document_id: str,
        action: str,
        user_email: Optional[str]
    ) -> DocumentInfo:
        """Authorize one document, appending refusals to the link's access log."""
        try:
            return self._authorize(link, document_id, action, user_email)
        except AccessGrantError as e:
            self.access_log.log_link_access(
                link,
                False,
                user_email=user_email,
                failure_reason=e.reason,
                document_id=document_id,
                action=action,
            )
            raise

    def _authorize(
        self,
        link: SharedLink,
        document_id: str,
        action: str,
        user_email: Optional[str]
    ) -> DocumentInfo:
        """Check link scope, link permissions and NDA coverage for one document."""
        if action not in (ACTION_VIEW, ACTION_DOWNLOAD):
            raise AccessGrantError(INVALID_ACTION, f"Unknown action: {action}", status_code=400)

        if link.document_id and link.document_id != document_id:
            raise AccessGrantError(ACCESS_DENIED, 'Document not accessible through this link')

        document = self.directory.get_document(link.room_id, document_id)
        if document is None or document.room_id != link.room_id:
            raise AccessGrantError(DOCUMENT_NOT_FOUND, 'Document not found', status_code=404)

        if link.folder_id and document.folder_id != link.folder_id:
            raise AccessGrantError(ACCESS_DENIED, 'Document not accessible through this link')

        if action == ACTION_DOWNLOAD and not link.permissions.can_download:
            raise AccessGrantError(ACCESS_DENIED, 'Downloads not allowed')
        if action == ACTION_VIEW and not link.permissions.can_view:
            raise AccessGrantError(ACCESS_DENIED, 'Viewing not allowed')

        if link.require_nda:
            if not user_email:
                raise AccessGrantError(NDA_REQUIRED, 'NDA required', requires_nda=True)
            verification = self.nda.verify_nda_access(link.room_id, user_email)
            if not verification.valid:
                raise AccessGrantError(NDA_REQUIRED, 'NDA required', requires_nda=True)
            if not verification.access_grant.covers(document.id, document.folder_id):
                raise AccessGrantError(ACCESS_DENIED, 'Document not covered by the NDA grant')

        return document

    def _put_grant(self, grant: ShortLivedAccessGrant):
        for attempt in range(GRANT_ID_ATTEMPTS):
            item = grant.to_item()
            item.update(pk=keys.access_grant_pk(grant.id), sk=keys.META)
            try:
                self.backend.put_item(item, if_not_exists=True)
                return
            except ConditionalCheckFailed:
                self.logger.warning("Access grant id collision (attempt %d)", attempt + 1)
                grant.id = f"slink-access-{uuid.uuid4()}"
        raise PersistenceError("Could not allocate a unique access grant id")
