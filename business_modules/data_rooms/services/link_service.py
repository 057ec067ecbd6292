"""
Shared link service.

Creates shared links and resolves them by id, secret token and short code.
Also holds the owner operations (revoke, extend, permission and password
changes) and the usage accounting done when a link is successfully used.

Every link is one canonical record plus three index records:

    SLINK#{id}         / META                canonical record
    SLINKTOKEN#{token} / LINK                token index
    SLINKSHORT#{CODE}  / LINK                short code index
    SLINKROOM#{room}   / {createdAt}#{id}    per-room chronological index

Index records only carry the link id, so they can be rebuilt from the
canonical record after a partial write.
"""

import secrets
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.core.exceptions import ValidationError

from .. import keys
from ..entities import (
    LINK_ACTIVE, LINK_EXHAUSTED, LINK_EXPIRED, LINK_REVOKED,
    SharedLink, SharedLinkPermissions, camel_case, to_iso,
)
from ..exceptions import ConditionalCheckFailed, LinkNotFound, PersistenceError
from .access_log_service import AccessLogService
from .base import DataRoomService, mask_secret

SHORT_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
SHORT_CODE_LENGTH = 8
TOKEN_BYTES = 32
INDEX_WRITE_ATTEMPTS = 5

EXPIRY_UNITS = {
    'hours': timedelta(hours=1),
    'days': timedelta(days=1),
    'weeks': timedelta(weeks=1),
}


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_short_code() -> str:
    return ''.join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH))


def compute_effective_status(link: SharedLink, now: datetime) -> str:
    """
    Derive a link's current lifecycle state.

    Revoked and exhausted are terminal. An active link past its expiry reads
    as expired, and one whose usage cap is reached reads as exhausted.
    """
    if link.status in (LINK_REVOKED, LINK_EXHAUSTED):
        return link.status
    if now > link.expires_at:
        return LINK_EXPIRED
    if link.max_uses is not None and link.current_uses >= link.max_uses:
        return LINK_EXHAUSTED
    return link.status


def calculate_expiration(
    now: datetime,
    expires_in: Optional[str] = None,
    expires_in_value: Optional[int] = None,
    expires_at: Optional[datetime] = None
) -> datetime:
    """Resolve an absolute expiry from a relative unit or an explicit date."""
    if expires_at is not None:
        return expires_at
    if expires_in in EXPIRY_UNITS:
        return now + EXPIRY_UNITS[expires_in] * (expires_in_value or 1)
    return now + timedelta(days=getattr(settings, 'DATA_ROOMS_DEFAULT_EXPIRY_DAYS', 7))


class SharedLinkService(DataRoomService):
    """Service for creating, resolving and managing shared links."""

    def __init__(self, backend=None, context=None, access_log: Optional[AccessLogService] = None):
        super().__init__(backend, context)
        self.access_log = access_log or AccessLogService(self.backend, self.context)
        self.room_page_size = getattr(settings, 'DATA_ROOMS_LINK_ROOM_PAGE_SIZE', 200)

    def create_link(
        self,
        room_id: str,
        created_by: str,
        created_by_email: str,
        document_id: Optional[str] = None,
        folder_id: Optional[str] = None,
        expires_in: Optional[str] = None,
        expires_in_value: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
        recipient_email: Optional[str] = None,
        recipient_name: Optional[str] = None,
        recipient_company: Optional[str] = None,
        permissions: Optional[Dict[str, Any]] = None,
        password: Optional[str] = None,
        require_nda: bool = False,
        nda_template_id: Optional[str] = None,
    ) -> SharedLink:
        """
        Create a shared link.

        Args:
            room_id: Room the link grants access to
            created_by: Display name of the owner
            created_by_email: Email of the owner
            document_id: Limit the link to one document
            folder_id: Limit the link to one folder
            expires_in: Relative expiry unit ('hours', 'days', 'weeks')
            expires_in_value: Number of units, defaults to 1
            expires_at: Absolute expiry, overrides the relative one
            max_uses: Number of successful uses before the link is exhausted
            permissions: Overrides of the view-only default permissions
            password: Plain password, stored as a salted hash

        Returns:
            The created SharedLink

        Raises:
            ValidationError: If the link parameters are inconsistent
        """
        if document_id and folder_id:
            raise ValidationError("A shared link targets a document or a folder, not both")
        if max_uses is not None and max_uses < 1:
            raise ValidationError("max_uses must be at least 1")

        now = self.now()
        link_expires_at = calculate_expiration(now, expires_in, expires_in_value, expires_at)
        if link_expires_at <= now:
            raise ValidationError("A shared link must expire in the future")

        link = SharedLink(
            id=f"link-{uuid.uuid4()}",
            room_id=room_id,
            token=generate_token(),
            short_code=generate_short_code(),
            created_by=created_by,
            created_by_email=created_by_email,
            created_at=now,
            expires_at=link_expires_at,
            max_uses=max_uses,
            document_id=document_id or None,
            folder_id=folder_id or None,
            recipient_email=recipient_email.strip().lower() if recipient_email else None,
            recipient_name=recipient_name or None,
            recipient_company=recipient_company or None,
            permissions=SharedLinkPermissions().merged(permissions),
            require_password=bool(password),
            password_hash=make_password(password) if password else None,
            require_nda=bool(require_nda),
            nda_template_id=nda_template_id or None,
        )

        self._put_link(link, if_not_exists=True)
        link.token = self._reserve_index(link, keys.link_token_pk, 'token', generate_token)
        link.short_code = self._reserve_index(
            link, keys.link_short_code_pk, 'short_code', generate_short_code
        )
        self.backend.put_item({
            'pk': keys.link_room_pk(room_id),
            'sk': keys.link_room_sk(to_iso(link.created_at), link.id),
            'linkId': link.id,
            'createdAt': to_iso(link.created_at),
        })

        self._log_operation(
            'Shared link created',
            {
                'link_id': link.id,
                'room_id': room_id,
                'scope': link.scope,
                'token': mask_secret(link.token),
                'expires_at': to_iso(link.expires_at),
            },
            actor=created_by_email
        )
        return link

    def get_link_by_id(self, link_id: str) -> Optional[SharedLink]:
        """Get a link by id, with its effective status."""
        item = self.backend.get_item(keys.link_pk(link_id), keys.META)
        if not item:
            return None
        return self._refresh_status(SharedLink.from_item(item))

    def get_link_by_token(self, token: str) -> Optional[SharedLink]:
        if not token:
            return None
        return self._resolve_index(keys.link_token_pk(token))

    def get_link_by_short_code(self, short_code: str) -> Optional[SharedLink]:
        if not short_code:
            return None
        return self._resolve_index(keys.link_short_code_pk(short_code))

    def get_links_by_room(self, room_id: str) -> List[SharedLink]:
        """Get a room's links, newest first."""
        index_items = self.backend.query(
            keys.link_room_pk(room_id), limit=self.room_page_size, ascending=False
        )
        links = []
        for index_item in index_items:
            link = self.get_link_by_id(index_item['linkId'])
            if link is not None:
                links.append(link)
        links.sort(key=lambda l: l.created_at, reverse=True)
        return links

    def check_password(self, link: SharedLink, password: Optional[str]) -> bool:
        if not password or not link.password_hash:
            return False
        return check_password(password, link.password_hash)

    def record_access(
        self,
        link_id: str,
        user_email: Optional[str] = None,
        success: bool = True,
        failure_reason: Optional[str] = None
    ) -> Optional[SharedLink]:
        """
        Record one use of a link.

        Appends an access log entry and, for a successful access, atomically
        increments the usage counter and marks the link exhausted once its
        cap is reached.

        Returns:
            The updated link, or None if the link does not exist
        """
        link = self.get_link_by_id(link_id)
        if link is None:
            return None

        self.access_log.log_link_access(
            link, success, user_email=user_email, failure_reason=failure_reason
        )
        if not success:
            return link

        item = self.backend.increment(keys.link_pk(link_id), keys.META, 'currentUses')
        link = SharedLink.from_item(item)
        if link.max_uses is not None and link.current_uses >= link.max_uses \
                and link.status == LINK_ACTIVE:
            self.backend.update_item(keys.link_pk(link_id), keys.META, {'status': LINK_EXHAUSTED})
            link.status = LINK_EXHAUSTED
            self._log_operation('Shared link exhausted', {'link_id': link_id}, actor=user_email)
        return link

    def revoke_link(self, link_id: str, revoked_by: str) -> SharedLink:
        """Permanently revoke a link."""
        link = self._require_link(link_id)
        revoked_at = self.now()
        self.backend.update_item(keys.link_pk(link_id), keys.META, {
            'status': LINK_REVOKED,
            'revokedAt': to_iso(revoked_at),
            'revokedBy': revoked_by,
        })
        self._log_operation('Shared link revoked', {'link_id': link_id}, actor=revoked_by)
        return replace(link, status=LINK_REVOKED, revoked_at=revoked_at, revoked_by=revoked_by)

    def extend_link(self, link_id: str, new_expires_at: datetime) -> SharedLink:
        """
        Move a link's expiry.

        An expired link becomes active again. Revoked and exhausted links
        keep their status.
        """
        link = self._require_link(link_id)
        if new_expires_at <= self.now():
            raise ValidationError("The new expiry must be in the future")

        changes = {'expiresAt': to_iso(new_expires_at)}
        status = link.status
        if status == LINK_EXPIRED:
            status = LINK_ACTIVE
            changes['status'] = LINK_ACTIVE
        self.backend.update_item(keys.link_pk(link_id), keys.META, changes)

        self._log_operation(
            'Shared link extended',
            {'link_id': link_id, 'expires_at': changes['expiresAt'], 'status': status}
        )
        return replace(link, expires_at=new_expires_at, status=status)

    def update_link_permissions(self, link_id: str, permissions: Dict[str, Any]) -> SharedLink:
        link = self._require_link(link_id)
        merged = link.permissions.merged(permissions)
        self.backend.update_item(keys.link_pk(link_id), keys.META, {'permissions': merged.to_item()})
        self._log_operation('Shared link permissions changed', {'link_id': link_id, 'permissions': merged.to_item()})
        return replace(link, permissions=merged)

    def update_link_password(self, link_id: str, password: Optional[str]) -> SharedLink:
        """Set or clear a link's password."""
        link = self._require_link(link_id)
        password_hash = make_password(password) if password else None
        self.backend.update_item(keys.link_pk(link_id), keys.META, {
            'requirePassword': bool(password),
            'passwordHash': password_hash,
        })
        self._log_operation(
            'Shared link password changed', {'link_id': link_id, 'require_password': bool(password)}
        )
        return replace(link, require_password=bool(password), password_hash=password_hash)

    def get_link_stats(self, link_id: str) -> Optional[Dict[str, Any]]:
        if self.get_link_by_id(link_id) is None:
            return None
        return self.access_log.get_link_stats(link_id)

    @staticmethod
    def get_link_url(link: SharedLink, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/shared/{link.token}"

    @staticmethod
    def get_short_link_url(link: SharedLink, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/s/{link.short_code}"

    def _require_link(self, link_id: str) -> SharedLink:
        link = self.get_link_by_id(link_id)
        if link is None:
            raise LinkNotFound(f"Shared link {link_id} not found")
        return link

    def _resolve_index(self, index_pk: str) -> Optional[SharedLink]:
        index_item = self.backend.get_item(index_pk, keys.LINK_INDEX)
        if not index_item or not index_item.get('linkId'):
            return None
        return self.get_link_by_id(index_item['linkId'])

    def _put_link(self, link: SharedLink, if_not_exists: bool = False):
        item = link.to_item()
        item.update(pk=keys.link_pk(link.id), sk=keys.META)
        self.backend.put_item(item, if_not_exists=if_not_exists)

    def _reserve_index(
        self,
        link: SharedLink,
        index_pk: Callable[[str], str],
        field_name: str,
        generate: Callable[[], str]
    ) -> str:
        """
        Claim a globally unique index value for a link.

        The index record is written only if absent; on collision a fresh
        value is generated and stored on the canonical record.
        """
        value = getattr(link, field_name)
        for attempt in range(INDEX_WRITE_ATTEMPTS):
            try:
                self.backend.put_item({
                    'pk': index_pk(value),
                    'sk': keys.LINK_INDEX,
                    'linkId': link.id,
                    'roomId': link.room_id,
                    'createdAt': to_iso(link.created_at),
                }, if_not_exists=True)
                return value
            except ConditionalCheckFailed:
                self.logger.warning(
                    "Shared link %s collision for %s (attempt %d)", field_name, link.id, attempt + 1
                )
                value = generate()
                self.backend.update_item(
                    keys.link_pk(link.id), keys.META, {camel_case(field_name): value}
                )
        raise PersistenceError(f"Could not reserve a unique {field_name} for {link.id}")

    def _refresh_status(self, link: SharedLink) -> SharedLink:
        """Apply the effective status and persist a stale one, best effort."""
        effective = compute_effective_status(link, self.now())
        if effective == link.status:
            return link
        try:
            self.backend.update_item(keys.link_pk(link.id), keys.META, {'status': effective})
        except PersistenceError as e:
            self.logger.warning(
                "Could not persist status %s for shared link %s: %s", effective, link.id, e
            )
        return replace(link, status=effective)
