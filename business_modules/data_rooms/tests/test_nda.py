"""Tests for NDA templates, signatures and grants."""

from datetime import timedelta
from unittest.mock import patch

from django.core.exceptions import ValidationError

from ..entities import (
    ACCESS_DENIED, EXPIRED, NO_SIGNATURE, REVOKED, SCOPE_SPECIFIC_DOCUMENTS,
    SCOPE_SPECIFIC_FOLDERS, SIGNATURE_REVOKED, utcnow,
)
from ..exceptions import NdaTemplateNotFound, SignatureNotFound
from ..services.nda_service import (
    DEFAULT_TEMPLATE_NAME, NdaService, generate_document_hash, strip_markup,
)
from .helpers import ROOM_ID, OTHER_ROOM_ID, DataRoomTestCase

CLOCK = 'business_modules.data_rooms.services.base.utcnow'


class NdaTemplateTest(DataRoomTestCase):
    """Test NDA templates."""

    def setUp(self):
        super().setUp()
        self.nda = self.services.nda

    def test_default_template_seeded_once(self):
        """Test create-on-read of the default template."""
        first = self.nda.get_active_template_for_room(ROOM_ID)
        second = self.nda.get_active_template_for_room(ROOM_ID)

        self.assertEqual(first.name, DEFAULT_TEMPLATE_NAME)
        self.assertEqual(first.version, '1')
        self.assertEqual(first.id, second.id)
        self.assertEqual(len(self.nda.get_templates_by_room(ROOM_ID)), 1)

    def test_concurrent_seed_returns_stored_template(self):
        """Test that a lost seeding race returns the winner's template."""
        other = NdaService(self.backend)
        stored = other.get_active_template_for_room(ROOM_ID)

        seeded = self.nda._seed_default_template(ROOM_ID)

        self.assertEqual(seeded.id, stored.id)
        self.assertEqual(seeded.created_at, stored.created_at)

    def test_create_template_becomes_active(self):
        """Test versioning and the single active template."""
        self.nda.get_active_template_for_room(ROOM_ID)

        template = self.nda.create_template(
            ROOM_ID, name='Fund I NDA', content='<p>Keep it <b>secret</b></p>', created_by='Anna Admin'
        )

        self.assertEqual(template.version, '2')
        self.assertEqual(template.content_plain_text, 'Keep it secret')
        self.assertEqual(self.nda.get_active_template_for_room(ROOM_ID).id, template.id)

        templates = self.nda.get_templates_by_room(ROOM_ID)
        self.assertEqual(len(templates), 2)
        self.assertEqual([t.id for t in templates if t.is_active], [template.id])

    def test_create_template_requires_content(self):
        with self.assertRaises(ValidationError):
            self.nda.create_template(ROOM_ID, name='Empty', content='   ', created_by='Anna Admin')

    def test_templates_are_per_room(self):
        template = self.nda.create_template(ROOM_ID, name='NDA', content='Terms', created_by='Anna')

        self.assertNotEqual(self.nda.get_active_template_for_room(OTHER_ROOM_ID).id, template.id)
        self.assertEqual(self.nda.get_template_by_id(ROOM_ID, template.id).id, template.id)
        self.assertIsNone(self.nda.get_template_by_id(OTHER_ROOM_ID, template.id))


class DocumentHashTest(DataRoomTestCase):
    """Test template content hashing."""

    def test_markup_changes_keep_hash(self):
        self.assertEqual(
            generate_document_hash(strip_markup('<p>Confidential terms</p>')),
            generate_document_hash(strip_markup('<div><em>Confidential terms</em></div>'))
        )

    def test_text_changes_change_hash(self):
        self.assertNotEqual(
            generate_document_hash(strip_markup('<p>Confidential terms</p>')),
            generate_document_hash(strip_markup('<p>Confidential terms apply</p>'))
        )


class NdaSigningTest(DataRoomTestCase):
    """Test signing and verification."""

    def setUp(self):
        super().setUp()
        self.nda = self.services.nda

    def sign(self, room_id=ROOM_ID, **kwargs):
        kwargs.setdefault('signer_name', 'Bob Investor')
        kwargs.setdefault('signer_email', 'Bob@Investor.example')
        kwargs.setdefault('signer_company', 'Investor LLC')
        return self.nda.sign_nda(room_id, **kwargs)

    def test_sign_and_verify(self):
        """Test that a signature grants access for that room and email only."""
        signature, grant = self.sign(ip_address='10.0.0.1', user_agent='pytest')

        self.assertEqual(signature.signer_email, 'bob@investor.example')
        self.assertEqual(signature.ip_address, '10.0.0.1')
        self.assertEqual(grant.signature_id, signature.id)
        self.assertEqual(grant.user_email, 'bob@investor.example')

        result = self.nda.verify_nda_access(ROOM_ID, 'BOB@investor.example')
        self.assertTrue(result.valid)
        self.assertEqual(result.signature.id, signature.id)
        self.assertEqual(result.access_grant.id, grant.id)
        self.assertEqual(result.template.version, '1')

        other_room = self.nda.verify_nda_access(OTHER_ROOM_ID, 'bob@investor.example')
        other_email = self.nda.verify_nda_access(ROOM_ID, 'eve@other.example')
        self.assertFalse(other_room.valid)
        self.assertEqual(other_room.error, NO_SIGNATURE)
        self.assertFalse(other_email.valid)
        self.assertEqual(other_email.error, NO_SIGNATURE)

    def test_verify_without_email(self):
        self.assertEqual(self.nda.verify_nda_access(ROOM_ID, None).error, NO_SIGNATURE)

    def test_same_template_same_document_hash(self):
        first, _ = self.sign()
        second, _ = self.sign(signer_name='Carol Investor', signer_email='carol@investor.example')

        self.assertEqual(first.document_hash, second.document_hash)
        self.assertNotEqual(first.signature_hash, second.signature_hash)

    def test_new_template_text_changes_hash(self):
        first, _ = self.sign()
        self.nda.create_template(ROOM_ID, name='NDA v2', content='Different terms', created_by='Anna')
        second, _ = self.sign()

        self.assertNotEqual(first.document_hash, second.document_hash)
        self.assertEqual(second.template_version, '2')

    def test_signature_hash_verifiable(self):
        """Test that a signature can be checked without the template."""
        signature, _ = self.sign()

        self.assertTrue(NdaService.verify_signature_hash(signature))
        signature.signer_name = 'Someone Else'
        self.assertFalse(NdaService.verify_signature_hash(signature))

    def test_required_fields_enforced(self):
        """Test the template's field requirements."""
        with self.assertRaises(ValidationError) as ctx:
            self.sign(signer_company='')

        self.assertIn('signer_company', ctx.exception.message_dict)

    def test_email_always_required(self):
        self.nda.create_template(
            ROOM_ID, name='Light NDA', content='Terms', created_by='Anna',
            require_email=False, require_company=False
        )

        with self.assertRaises(ValidationError):
            self.sign(signer_email='')

    def test_stale_template_id_rejected(self):
        """Test signing against a template that is no longer active."""
        old = self.nda.get_active_template_for_room(ROOM_ID)
        self.nda.create_template(ROOM_ID, name='NDA v2', content='New terms', created_by='Anna')

        with self.assertRaises(NdaTemplateNotFound):
            self.sign(template_id=old.id)

    def test_scoped_grants(self):
        """Test document and folder scoped grants."""
        _, documents_grant = self.sign(
            access_scope=SCOPE_SPECIFIC_DOCUMENTS, allowed_document_ids=['doc-1']
        )
        self.assertTrue(documents_grant.covers('doc-1', 'folder-a'))
        self.assertFalse(documents_grant.covers('doc-2', 'folder-a'))

        _, folders_grant = self.sign(
            signer_email='carol@investor.example',
            access_scope=SCOPE_SPECIFIC_FOLDERS,
            allowed_folder_ids=['folder-b'],
        )
        self.assertTrue(folders_grant.covers('doc-3', 'folder-b'))
        self.assertFalse(folders_grant.covers('doc-1', 'folder-a'))

    def test_scoped_grant_needs_targets(self):
        with self.assertRaises(ValidationError):
            self.sign(access_scope=SCOPE_SPECIFIC_DOCUMENTS)

    def test_latest_grant_wins(self):
        """Test that verification uses the most recent grant."""
        self.sign(access_scope=SCOPE_SPECIFIC_DOCUMENTS, allowed_document_ids=['doc-1'])
        later = utcnow() + timedelta(seconds=5)
        with patch(CLOCK, return_value=later):
            _, latest = self.sign()
            result = self.nda.verify_nda_access(ROOM_ID, 'bob@investor.example')

        self.assertEqual(result.access_grant.id, latest.id)

    def test_room_listings_newest_first(self):
        first, first_grant = self.sign()
        with patch(CLOCK, return_value=utcnow() + timedelta(seconds=5)):
            second, second_grant = self.sign(signer_email='carol@investor.example')

        signatures = self.nda.get_signatures_by_room(ROOM_ID)
        grants = self.nda.get_grants_by_room(ROOM_ID)

        self.assertEqual([s.id for s in signatures], [second.id, first.id])
        self.assertEqual([g.id for g in grants], [second_grant.id, first_grant.id])
        self.assertEqual(self.nda.get_signatures_by_room(OTHER_ROOM_ID), [])

    def test_expired_grant(self):
        self.sign(access_expires_in=1)

        with patch(CLOCK, return_value=utcnow() + timedelta(days=2)):
            result = self.nda.verify_nda_access(ROOM_ID, 'bob@investor.example')

        self.assertFalse(result.valid)
        self.assertEqual(result.error, EXPIRED)

    def test_revoke_signature(self):
        """Test that revoking a signature deactivates its grant."""
        signature, _ = self.sign()

        revoked = self.nda.revoke_signature(ROOM_ID, signature.id, reason='Deal closed', revoked_by='Anna')

        self.assertEqual(revoked.status, SIGNATURE_REVOKED)
        stored = self.nda.get_signature_by_id(ROOM_ID, signature.id)
        self.assertEqual(stored.status, SIGNATURE_REVOKED)
        self.assertEqual(stored.revoked_reason, 'Deal closed')

        result = self.nda.verify_nda_access(ROOM_ID, 'bob@investor.example')
        self.assertFalse(result.valid)
        self.assertEqual(result.error, REVOKED)

    def test_revoke_unknown_signature(self):
        with self.assertRaises(SignatureNotFound):
            self.nda.revoke_signature(ROOM_ID, 'nda-signature-missing')

    def test_missing_grant_record_denies(self):
        """Test a reverse index entry whose grant is gone."""
        _, grant = self.sign()
        for item in self.backend.query(f"ROOM#{ROOM_ID}", sk_prefix='NDA_GRANT#'):
            self.backend.delete_item(item['pk'], item['sk'])

        self.assertEqual(self.nda.verify_nda_access(ROOM_ID, 'bob@investor.example').error, ACCESS_DENIED)

    def test_room_stats(self):
        """Test signature statistics."""
        first, _ = self.sign()
        self.sign(signer_email='carol@investor.example')
        self.sign(signer_email='dave@investor.example', access_expires_in=1)
        self.nda.revoke_signature(ROOM_ID, first.id)

        with patch(CLOCK, return_value=utcnow() + timedelta(days=2)):
            stats = self.nda.get_room_nda_stats(ROOM_ID)

        self.assertEqual(stats['total_signatures'], 3)
        self.assertEqual(stats['revoked_signatures'], 1)
        self.assertEqual(stats['expired_signatures'], 1)
        self.assertEqual(stats['valid_signatures'], 1)
        self.assertEqual(stats['active_grants'], 1)
        self.assertIsNotNone(stats['last_signed_at'])
