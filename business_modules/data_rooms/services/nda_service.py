"""
NDA service.

Manages per-room NDA templates, records signatures and derives per-email
access grants from them.

Signatures bind the signer to the exact text they accepted: the document
hash is taken over the template's plain text (markup stripped) and the
signature hash over signer name, lower-cased email, signing time and the
document hash. Grants are found through a reverse index keyed by
lower-cased email, so verification never scans a room's signatures.
"""

import hashlib
import hmac
import re
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from django.core.exceptions import ValidationError

from .. import keys
from ..entities import (
    ACCESS_DENIED, ACCESS_SCOPES, EXPIRED, NO_SIGNATURE, REVOKED,
    SCOPE_FULL_ROOM, SCOPE_SPECIFIC_DOCUMENTS, SCOPE_SPECIFIC_FOLDERS,
    SIGNATURE_EXPIRED, SIGNATURE_REVOKED, SIGNATURE_VALID,
    NdaAccessGrant, NdaSignature, NdaTemplate, NdaVerificationResult, to_iso,
)
from ..exceptions import ConditionalCheckFailed, NdaTemplateNotFound, SignatureNotFound
from .base import DataRoomService

TAG_PATTERN = re.compile(r'<[^>]*>')

DEFAULT_TEMPLATE_NAME = 'Standard NDA'
DEFAULT_TEMPLATE_CONTENT = (
    '<div class="nda-document">'
    '<h1>Non-Disclosure Agreement</h1>'
    '<p>The recipient agrees to keep all information made available in this data room '
    'strictly confidential, to use it solely to evaluate the proposed transaction and '
    'not to disclose it to any third party without prior written consent.</p>'
    '</div>'
)
DEFAULT_TEMPLATE_SK = f"{keys.NDA_TEMPLATE_PREFIX}0000#default"


def strip_markup(content: str) -> str:
    return TAG_PATTERN.sub('', content or '')


def generate_document_hash(plain_text: str) -> str:
    """SHA-256 of the plain text a signer accepted."""
    return hashlib.sha256(plain_text.encode('utf-8')).hexdigest()


def generate_signature_hash(signer_name: str, signer_email: str, signed_at: datetime, document_hash: str) -> str:
    data = f"{signer_name}|{signer_email.lower()}|{to_iso(signed_at)}|{document_hash}"
    return hashlib.sha256(data.encode('utf-8')).hexdigest()


class NdaService(DataRoomService):
    """Service for NDA templates, signatures and access grants."""

    def get_active_template_for_room(self, room_id: str) -> NdaTemplate:
        """
        Get the room's active template.

        The newest template flagged active wins. A room without any active
        template gets the default template, created once.
        """
        for template in self.get_templates_by_room(room_id):
            if template.is_active:
                return template
        return self._seed_default_template(room_id)

    def get_templates_by_room(self, room_id: str) -> List[NdaTemplate]:
        """Get every template of a room, newest first."""
        items = self.backend.query(
            keys.room_pk(room_id), sk_prefix=keys.NDA_TEMPLATE_PREFIX, ascending=False
        )
        return [NdaTemplate.from_item(item) for item in items]

    def get_template_by_id(self, room_id: str, template_id: str) -> Optional[NdaTemplate]:
        for template in self.get_templates_by_room(room_id):
            if template.id == template_id:
                return template
        return None

    def create_template(
        self,
        room_id: str,
        name: str,
        content: str,
        created_by: str,
        require_signature: bool = True,
        require_initials: bool = False,
        require_full_name: bool = True,
        require_email: bool = True,
        require_company: bool = True,
        require_title: bool = False,
        custom_fields: Optional[List[Dict[str, Any]]] = None,
    ) -> NdaTemplate:
        """
        Add a new template version to a room.

        The new template becomes the active one; earlier templates are kept
        for audit and their active flag is cleared.
        """
        if not (content or '').strip():
            raise ValidationError("NDA template content is required")

        existing = self.get_templates_by_room(room_id)
        now = self.now()
        template = NdaTemplate(
            id=f"nda-template-{uuid.uuid4()}",
            room_id=room_id,
            name=name or 'NDA',
            version=str(len(existing) + 1),
            content=content,
            content_plain_text=strip_markup(content),
            created_at=now,
            created_by=created_by,
            updated_at=now,
            is_active=True,
            require_signature=require_signature,
            require_initials=require_initials,
            require_full_name=require_full_name,
            require_email=require_email,
            require_company=require_company,
            require_title=require_title,
            custom_fields=custom_fields,
        )
        self._put_template(template, keys.nda_template_sk(to_iso(now), template.id))

        for previous in existing:
            if previous.is_active:
                self.backend.update_item(
                    keys.room_pk(room_id), self._template_sk(previous), {'isActive': False}
                )

        self._log_operation(
            'NDA template created',
            {'room_id': room_id, 'template_id': template.id, 'version': template.version},
            actor=created_by
        )
        return template

    def sign_nda(
        self,
        room_id: str,
        signer_name: str,
        signer_email: str,
        signer_company: Optional[str] = None,
        signer_title: Optional[str] = None,
        signature_image: Optional[str] = None,
        initials: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        custom_field_values: Optional[Dict[str, Any]] = None,
        access_scope: str = SCOPE_FULL_ROOM,
        allowed_document_ids: Optional[List[str]] = None,
        allowed_folder_ids: Optional[List[str]] = None,
        access_expires_in: Optional[int] = None,
        template_id: Optional[str] = None,
    ) -> Tuple[NdaSignature, NdaAccessGrant]:
        """
        Record a signature of the room's active template.

        Args:
            room_id: Room the NDA belongs to
            signer_name: Full name of the signer
            signer_email: Email the derived grant is issued to
            access_scope: full_room, specific_documents or specific_folders
            allowed_document_ids: Documents covered by a specific_documents grant
            allowed_folder_ids: Folders covered by a specific_folders grant
            access_expires_in: Days until the signature and grant expire
            template_id: Template the signer saw; must be the active one

        Returns:
            Tuple of (signature, access grant)

        Raises:
            NdaTemplateNotFound: If template_id is not the room's active template
            ValidationError: If a field the template requires is missing
        """
        template = self.get_active_template_for_room(room_id)
        if template_id and template_id != template.id:
            raise NdaTemplateNotFound(f"NDA template {template_id} is not active in room {room_id}")

        signer_name = (signer_name or '').strip()
        signer_email = (signer_email or '').strip().lower()
        self._check_required_fields(template, signer_name, signer_email, signer_company, signer_title, initials)

        if access_scope not in ACCESS_SCOPES:
            raise ValidationError(f"Unknown access scope: {access_scope}")
        if access_scope == SCOPE_SPECIFIC_DOCUMENTS and not allowed_document_ids:
            raise ValidationError("A specific_documents grant needs at least one document")
        if access_scope == SCOPE_SPECIFIC_FOLDERS and not allowed_folder_ids:
            raise ValidationError("A specific_folders grant needs at least one folder")

        signed_at = self.now()
        expires_at = signed_at + timedelta(days=access_expires_in) if access_expires_in else None
        document_hash = generate_document_hash(template.content_plain_text)

        signature = NdaSignature(
            id=f"nda-signature-{uuid.uuid4()}",
            template_id=template.id,
            template_version=template.version,
            room_id=room_id,
            signer_name=signer_name,
            signer_email=signer_email,
            signer_company=signer_company or None,
            signer_title=signer_title or None,
            signature_image=signature_image or None,
            initials=initials or None,
            signed_at=signed_at,
            ip_address=ip_address or 'unknown',
            user_agent=user_agent or 'unknown',
            custom_field_values=custom_field_values or None,
            document_hash=document_hash,
            signature_hash=generate_signature_hash(signer_name, signer_email, signed_at, document_hash),
            status=SIGNATURE_VALID,
            expires_at=expires_at,
        )
        grant = NdaAccessGrant(
            id=f"nda-grant-{uuid.uuid4()}",
            signature_id=signature.id,
            room_id=room_id,
            user_email=signer_email,
            granted_at=signed_at,
            expires_at=expires_at,
            access_scope=access_scope,
            allowed_document_ids=list(allowed_document_ids) if access_scope == SCOPE_SPECIFIC_DOCUMENTS else None,
            allowed_folder_ids=list(allowed_folder_ids) if access_scope == SCOPE_SPECIFIC_FOLDERS else None,
            is_active=True,
        )

        signature_sk = keys.nda_signature_sk(to_iso(signed_at), signature.id)
        grant_sk = keys.nda_grant_sk(to_iso(signed_at), grant.id)

        item = signature.to_item()
        item.update(pk=keys.room_pk(room_id), sk=signature_sk)
        self.backend.put_item(item, if_not_exists=True)

        item = grant.to_item()
        item.update(pk=keys.room_pk(room_id), sk=grant_sk, signatureSk=signature_sk)
        self.backend.put_item(item, if_not_exists=True)

        self.backend.put_item({
            'pk': keys.nda_email_pk(signer_email),
            'sk': keys.nda_email_sk(room_id, grant.id),
            'roomId': room_id,
            'grantId': grant.id,
            'grantSk': grant_sk,
            'grantedAt': to_iso(signed_at),
        })

        self._log_operation(
            'NDA signed',
            {
                'room_id': room_id,
                'template_id': template.id,
                'version': template.version,
                'signature_id': signature.id,
                'scope': access_scope,
            },
            actor=signer_email
        )
        return signature, grant

    def verify_nda_access(self, room_id: str, user_email: Optional[str]) -> NdaVerificationResult:
        """
        Check whether an email holds a usable NDA grant for a room.

        Uses the most recently granted of the email's grants for the room.
        """
        email = (user_email or '').strip().lower()
        if not email:
            return NdaVerificationResult(valid=False, error=NO_SIGNATURE)

        index_items = self.backend.query(
            keys.nda_email_pk(email), sk_prefix=f"ROOM#{room_id}#"
        )
        if not index_items:
            return NdaVerificationResult(valid=False, error=NO_SIGNATURE)

        latest = max(index_items, key=lambda i: i.get('grantedAt') or '')
        grant_item = self.backend.get_item(keys.room_pk(room_id), latest['grantSk'])
        if not grant_item:
            return NdaVerificationResult(valid=False, error=ACCESS_DENIED)

        grant = NdaAccessGrant.from_item(grant_item)
        signature = None
        if grant_item.get('signatureSk'):
            signature_item = self.backend.get_item(keys.room_pk(room_id), grant_item['signatureSk'])
            if signature_item:
                signature = NdaSignature.from_item(signature_item)

        if not grant.is_active:
            return NdaVerificationResult(
                valid=False,
                error=REVOKED if grant.revoked_at else ACCESS_DENIED,
                signature=signature,
                access_grant=grant,
            )
        if grant.is_expired(self.now()):
            return NdaVerificationResult(
                valid=False, error=EXPIRED, signature=signature, access_grant=grant
            )

        return NdaVerificationResult(
            valid=True,
            signature=signature,
            access_grant=grant,
            template=self.get_active_template_for_room(room_id),
        )

    def get_signatures_by_room(self, room_id: str) -> List[NdaSignature]:
        """Get a room's signatures, newest first."""
        items = self.backend.query(
            keys.room_pk(room_id), sk_prefix=keys.NDA_SIGNATURE_PREFIX, ascending=False
        )
        return [NdaSignature.from_item(item) for item in items]

    def get_grants_by_room(self, room_id: str) -> List[NdaAccessGrant]:
        items = self.backend.query(
            keys.room_pk(room_id), sk_prefix=keys.NDA_GRANT_PREFIX, ascending=False
        )
        return [NdaAccessGrant.from_item(item) for item in items]

    def get_signature_by_id(self, room_id: str, signature_id: str) -> Optional[NdaSignature]:
        for signature in self.get_signatures_by_room(room_id):
            if signature.id == signature_id:
                return signature
        return None

    def revoke_signature(
        self,
        room_id: str,
        signature_id: str,
        reason: str = '',
        revoked_by: Optional[str] = None
    ) -> NdaSignature:
        """
        Revoke a signature and deactivate every grant derived from it.

        Raises:
            SignatureNotFound: If the room has no such signature
        """
        signature = self.get_signature_by_id(room_id, signature_id)
        if signature is None:
            raise SignatureNotFound(f"NDA signature {signature_id} not found in room {room_id}")

        revoked_at = self.now()
        self.backend.update_item(
            keys.room_pk(room_id),
            keys.nda_signature_sk(to_iso(signature.signed_at), signature.id),
            {'status': SIGNATURE_REVOKED, 'revokedAt': to_iso(revoked_at), 'revokedReason': reason or None}
        )

        for grant in self.get_grants_by_room(room_id):
            if grant.signature_id == signature_id and grant.is_active:
                self.backend.update_item(
                    keys.room_pk(room_id),
                    keys.nda_grant_sk(to_iso(grant.granted_at), grant.id),
                    {'isActive': False, 'revokedAt': to_iso(revoked_at)}
                )

        self._log_operation(
            'NDA signature revoked',
            {'room_id': room_id, 'signature_id': signature_id, 'reason': reason},
            actor=revoked_by
        )
        return replace(
            signature, status=SIGNATURE_REVOKED, revoked_at=revoked_at, revoked_reason=reason or None
        )

    @staticmethod
    def verify_signature_hash(signature: NdaSignature) -> bool:
        """Recompute a signature's binding hash and compare it."""
        expected = generate_signature_hash(
            signature.signer_name, signature.signer_email, signature.signed_at, signature.document_hash
        )
        return hmac.compare_digest(expected, signature.signature_hash)

    def get_room_nda_stats(self, room_id: str) -> Dict[str, Any]:
        now = self.now()
        signatures = self.get_signatures_by_room(room_id)
        grants = self.get_grants_by_room(room_id)

        revoked = [s for s in signatures if s.status == SIGNATURE_REVOKED]
        expired = [
            s for s in signatures
            if s.status == SIGNATURE_EXPIRED
            or (s.status == SIGNATURE_VALID and s.expires_at and now > s.expires_at)
        ]
        return {
            'total_signatures': len(signatures),
            'valid_signatures': len(signatures) - len(revoked) - len(expired),
            'revoked_signatures': len(revoked),
            'expired_signatures': len(expired),
            'active_grants': len([g for g in grants if g.is_active and not g.is_expired(now)]),
            'last_signed_at': max((s.signed_at for s in signatures), default=None),
        }

    def _seed_default_template(self, room_id: str) -> NdaTemplate:
        now = self.now()
        template = NdaTemplate(
            id=f"nda-template-default-{room_id}",
            room_id=room_id,
            name=DEFAULT_TEMPLATE_NAME,
            version='1',
            content=DEFAULT_TEMPLATE_CONTENT,
            content_plain_text=strip_markup(DEFAULT_TEMPLATE_CONTENT),
            created_at=now,
            created_by='System',
            updated_at=now,
        )
        try:
            self._put_template(template, DEFAULT_TEMPLATE_SK, if_not_exists=True)
        except ConditionalCheckFailed:
            item = self.backend.get_item(keys.room_pk(room_id), DEFAULT_TEMPLATE_SK)
            if item is None:
                raise
            return NdaTemplate.from_item(item)

        self._log_operation('Default NDA template seeded', {'room_id': room_id})
        return template

    def _put_template(self, template: NdaTemplate, sk: str, if_not_exists: bool = True):
        item = template.to_item()
        item.update(pk=keys.room_pk(template.room_id), sk=sk)
        self.backend.put_item(item, if_not_exists=if_not_exists)

    @staticmethod
    def _template_sk(template: NdaTemplate) -> str:
        if template.id == f"nda-template-default-{template.room_id}":
            return DEFAULT_TEMPLATE_SK
        return keys.nda_template_sk(to_iso(template.updated_at), template.id)

    @staticmethod
    def _check_required_fields(template, signer_name, signer_email, signer_company, signer_title, initials):
        required = [
            (template.require_full_name, signer_name, 'signer_name'),
            (template.require_email, signer_email, 'signer_email'),
            (template.require_company, signer_company, 'signer_company'),
            (template.require_title, signer_title, 'signer_title'),
            (template.require_initials, initials, 'initials'),
        ]
        missing = [name for needed, value, name in required if needed and not (value or '').strip()]
        # A grant is keyed by email, so one is needed whatever the template says
        if not signer_email and 'signer_email' not in missing:
            missing.append('signer_email')
        if missing:
            raise ValidationError({name: "This field is required by the NDA template." for name in missing})
