"""
Data Room Records

Dataclasses for the records kept in the data room table, plus the outcome
types returned by the validation and verification services.

Records are stored as camelCase attribute maps with ISO-8601 timestamps.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, List, Optional

from django.utils.dateparse import parse_datetime


# Shared link lifecycle
LINK_ACTIVE = 'active'
LINK_EXPIRED = 'expired'
LINK_REVOKED = 'revoked'
LINK_EXHAUSTED = 'exhausted'

# Validation failure reasons
NOT_FOUND = 'not_found'
EXPIRED = 'expired'
REVOKED = 'revoked'
EXHAUSTED = 'exhausted'
WRONG_EMAIL = 'wrong_email'
PASSWORD_REQUIRED = 'password_required'
NDA_REQUIRED = 'nda_required'
ACCESS_DENIED = 'access_denied'
RATE_LIMITED = 'rate_limited'

# NDA verification failure reasons
NO_SIGNATURE = 'no_signature'
TEMPLATE_OUTDATED = 'template_outdated'

# Signature status
SIGNATURE_VALID = 'valid'
SIGNATURE_REVOKED = 'revoked'
SIGNATURE_EXPIRED = 'expired'

# NDA grant scopes
SCOPE_FULL_ROOM = 'full_room'
SCOPE_SPECIFIC_DOCUMENTS = 'specific_documents'
SCOPE_SPECIFIC_FOLDERS = 'specific_folders'

ACCESS_SCOPES = (SCOPE_FULL_ROOM, SCOPE_SPECIFIC_DOCUMENTS, SCOPE_SPECIFIC_FOLDERS)

# Access grant actions
ACTION_VIEW = 'view'
ACTION_DOWNLOAD = 'download'


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as a UTC ISO-8601 string that sorts lexicographically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def from_iso(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid ISO-8601 timestamp: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


class StoredRecord:
    """
    Mixin converting dataclass records to and from table attribute maps.

    Subclasses list their datetime fields in ``datetime_fields`` and nested
    record fields in ``nested_fields``.
    """

    datetime_fields: tuple = ()
    nested_fields: Dict[str, type] = {}

    def to_item(self) -> Dict[str, Any]:
        item = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name in self.datetime_fields:
                value = to_iso(value)
            elif f.name in self.nested_fields:
                value = value.to_item()
            elif isinstance(value, (list, dict)):
                value = list(value) if isinstance(value, list) else dict(value)
            item[camel_case(f.name)] = value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]):
        kwargs = {}
        for f in fields(cls):
            key = camel_case(f.name)
            if key not in item:
                continue
            value = item[key]
            if f.name in cls.datetime_fields:
                value = from_iso(value)
            elif f.name in cls.nested_fields and value is not None:
                value = cls.nested_fields[f.name].from_item(value)
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class SharedLinkPermissions(StoredRecord):
    """What a shared link allows. Defaults to view-only with watermarking."""
    can_view: bool = True
    can_download: bool = False
    can_print: bool = False
    apply_watermark: bool = True
    track_activity: bool = True

    def merged(self, changes: Optional[Dict[str, Any]]) -> 'SharedLinkPermissions':
        values = asdict(self)
        for name, value in (changes or {}).items():
            if name in values and value is not None:
                values[name] = bool(value)
        return SharedLinkPermissions(**values)


@dataclass
class SharedLink(StoredRecord):
    """A bearer capability for one document, one folder or a whole room."""
    id: str
    room_id: str
    token: str
    short_code: str
    created_by: str
    created_by_email: str
    created_at: datetime
    expires_at: datetime
    current_uses: int = 0
    max_uses: Optional[int] = None
    document_id: Optional[str] = None
    folder_id: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_company: Optional[str] = None
    permissions: SharedLinkPermissions = field(default_factory=SharedLinkPermissions)
    require_password: bool = False
    password_hash: Optional[str] = None
    require_nda: bool = False
    nda_template_id: Optional[str] = None
    status: str = LINK_ACTIVE
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    datetime_fields = ('created_at', 'expires_at', 'revoked_at')
    nested_fields = {'permissions': SharedLinkPermissions}

    @property
    def scope(self) -> str:
        if self.document_id:
            return 'document'
        if self.folder_id:
            return 'folder'
        return 'room'


@dataclass
class NdaTemplate(StoredRecord):
    """Per-room NDA text; new templates append, old ones are kept."""
    id: str
    room_id: str
    name: str
    version: str
    content: str
    content_plain_text: str
    created_at: datetime
    created_by: str
    updated_at: datetime
    is_active: bool = True
    require_signature: bool = True
    require_initials: bool = False
    require_full_name: bool = True
    require_email: bool = True
    require_company: bool = True
    require_title: bool = False
    custom_fields: Optional[List[Dict[str, Any]]] = None

    datetime_fields = ('created_at', 'updated_at')

    def descriptor(self) -> Dict[str, Any]:
        """What a signer needs to render the acceptance form."""
        return {
            'templateId': self.id,
            'name': self.name,
            'version': self.version,
            'requireSignature': self.require_signature,
            'requireInitials': self.require_initials,
            'requireFullName': self.require_full_name,
            'requireEmail': self.require_email,
            'requireCompany': self.require_company,
            'requireTitle': self.require_title,
        }


@dataclass
class NdaSignature(StoredRecord):
    """One signer's acceptance of one template version."""
    id: str
    template_id: str
    template_version: str
    room_id: str
    signer_name: str
    signer_email: str
    signed_at: datetime
    document_hash: str
    signature_hash: str
    ip_address: str = 'unknown'
    user_agent: str = 'unknown'
    signer_company: Optional[str] = None
    signer_title: Optional[str] = None
    signature_image: Optional[str] = None
    initials: Optional[str] = None
    custom_field_values: Optional[Dict[str, Any]] = None
    status: str = SIGNATURE_VALID
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    datetime_fields = ('signed_at', 'revoked_at', 'expires_at')


@dataclass
class NdaAccessGrant(StoredRecord):
    """Per-email room access derived from a signature."""
    id: str
    signature_id: str
    room_id: str
    user_email: str
    granted_at: datetime
    access_scope: str = SCOPE_FULL_ROOM
    expires_at: Optional[datetime] = None
    allowed_document_ids: Optional[List[str]] = None
    allowed_folder_ids: Optional[List[str]] = None
    is_active: bool = True
    revoked_at: Optional[datetime] = None

    datetime_fields = ('granted_at', 'expires_at', 'revoked_at')

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return bool(self.expires_at and (now or utcnow()) > self.expires_at)

    def covers(self, document_id: Optional[str] = None, folder_id: Optional[str] = None) -> bool:
        """Check whether the grant's scope includes a document."""
        if self.access_scope == SCOPE_SPECIFIC_DOCUMENTS:
            return bool(document_id) and document_id in (self.allowed_document_ids or [])
        if self.access_scope == SCOPE_SPECIFIC_FOLDERS:
            return bool(folder_id) and folder_id in (self.allowed_folder_ids or [])
        return True


@dataclass
class AccessIdentity(StoredRecord):
    """Who a grant was minted for."""
    user_name: str
    user_email: Optional[str] = None
    verified: bool = False


@dataclass
class ShortLivedAccessGrant(StoredRecord):
    """Single-use redemption record evicted by the store after its ttl."""
    id: str
    link_id: str
    room_id: str
    shared_token: str
    document_id: str
    action: str
    identity: AccessIdentity
    created_at: datetime
    ttl: int
    watermark_applied: bool = False
    watermark_tracking_code: Optional[str] = None
    consumed_at: Optional[datetime] = None

    datetime_fields = ('created_at', 'consumed_at')
    nested_fields = {'identity': AccessIdentity}


EVENT_VALIDATION = 'validation'
EVENT_GRANT_ISSUED = 'grant_issued'


@dataclass
class AccessLogEntry(StoredRecord):
    """One validation attempt or grant issuance against a shared link."""
    id: str
    link_id: str
    room_id: str
    timestamp: datetime
    success: bool
    event: str = EVENT_VALIDATION
    user_email: Optional[str] = None
    failure_reason: Optional[str] = None
    document_id: Optional[str] = None
    action: Optional[str] = None
    watermark_tracking_code: Optional[str] = None

    datetime_fields = ('timestamp',)


@dataclass
class RoomActivity(StoredRecord):
    """One room-level event, such as a document delivery or an NDA signature."""
    id: str
    room_id: str
    action: str
    timestamp: datetime
    user_id: str
    user_name: str
    user_email: str = ''
    user_company: Optional[str] = None
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    action_details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    access_method: str = 'direct'
    shared_link_id: Optional[str] = None
    watermark_applied: bool = False
    watermark_tracking_code: Optional[str] = None

    datetime_fields = ('timestamp',)


@dataclass
class ValidateLinkResult:
    """Outcome of the shared link check pipeline."""
    valid: bool
    link: Optional[SharedLink] = None
    error: Optional[str] = None
    requires_password: Optional[bool] = None
    requires_nda: Optional[bool] = None
    nda_template_id: Optional[str] = None


@dataclass
class NdaVerificationResult:
    """Outcome of an NDA access check for one email in one room."""
    valid: bool
    signature: Optional[NdaSignature] = None
    access_grant: Optional[NdaAccessGrant] = None
    template: Optional[NdaTemplate] = None
    error: Optional[str] = None
