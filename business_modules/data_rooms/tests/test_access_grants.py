"""Tests for issuing and redeeming short-lived access grants."""

import io
from unittest.mock import patch, MagicMock

from botocore.exceptions import ClientError
from django.contrib.auth import get_user_model
from PyPDF2 import PdfReader

from .. import keys
from ..entities import (
    ACCESS_DENIED, ACTION_DOWNLOAD, ACTION_VIEW, EVENT_GRANT_ISSUED, NDA_REQUIRED, NOT_FOUND,
    PASSWORD_REQUIRED, REVOKED, SCOPE_SPECIFIC_DOCUMENTS, AccessIdentity,
)
from ..exceptions import AccessGrantError, ContentUnavailable
from ..services.access_grant_service import (
    CONSUMED, DOCUMENT_NOT_FOUND, INVALID_ACTION, external_user_id, resolve_identity,
)
from ..services.access_log_service import DOWNLOAD_DOCUMENT, VIEW_DOCUMENT
from .helpers import ROOM_ID, DataRoomTestCase, make_pdf, seed_pdf_document

User = get_user_model()

PRESIGNED_URL = 'https://test-data-room-bucket.s3.amazonaws.com/rooms/room-1/doc-1.xlsx?X-Amz-Signature=abc'


class ResolveIdentityTest(DataRoomTestCase):
    """Test identity resolution."""

    def test_verified_user_wins(self):
        user = User.objects.create_user(
            username='anna', email='Anna@Fund.example', password='testpass',
            first_name='Anna', last_name='Admin'
        )

        identity = resolve_identity(user, user_name='Mallory', user_email='mallory@evil.example')

        self.assertTrue(identity.verified)
        self.assertEqual(identity.user_email, 'anna@fund.example')
        self.assertEqual(identity.user_name, 'Anna Admin')

    def test_external_identity(self):
        identity = resolve_identity(None, user_name='  Bob ', user_email=' Bob@Investor.example ')

        self.assertFalse(identity.verified)
        self.assertEqual(identity.user_name, 'Bob')
        self.assertEqual(identity.user_email, 'bob@investor.example')

    def test_guest_identity(self):
        identity = resolve_identity(MagicMock(is_authenticated=False))

        self.assertEqual(identity.user_name, 'Guest')
        self.assertIsNone(identity.user_email)

    def test_external_user_id_is_stable_and_opaque(self):
        self.assertEqual(external_user_id('Bob@Investor.example'), external_user_id('bob@investor.example'))
        self.assertNotIn('bob', external_user_id('bob@investor.example'))


class AccessGrantServiceTest(DataRoomTestCase):
    """Test access grant service."""

    def setUp(self):
        super().setUp()
        patcher = patch('business_modules.data_rooms.services.content.boto3.client')
        self.mock_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.s3 = self.mock_client.return_value
        self.s3.generate_presigned_url.return_value = PRESIGNED_URL

        self.links = self.services.links
        self.grants = self.services.grants
        self.identity = AccessIdentity(user_name='Bob Investor', user_email='bob@investor.example')

    def create_link(self, **kwargs):
        return self.links.create_link(
            ROOM_ID, created_by='Anna Admin', created_by_email='anna@fund.example', **kwargs
        )

    def assert_refused(self, reason, status_code, *args, **kwargs):
        with self.assertRaises(AccessGrantError) as ctx:
            self.grants.issue_grant(*args, **kwargs)
        self.assertEqual(ctx.exception.reason, reason)
        self.assertEqual(ctx.exception.status_code, status_code)
        return ctx.exception

    def test_issue_grant(self):
        """Test minting a grant with a watermark code."""
        link = self.create_link()

        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        self.assertTrue(grant.id.startswith('slink-access-'))
        self.assertEqual(grant.link_id, link.id)
        self.assertEqual(grant.document_id, 'doc-1')
        self.assertTrue(grant.watermark_applied)
        self.assertEqual(len(grant.watermark_tracking_code), 8)
        self.assertEqual(grant.ttl, int(grant.created_at.timestamp()) + 300)

        stored = self.backend.get_item(keys.access_grant_pk(grant.id), keys.META)
        self.assertEqual(stored['sharedToken'], link.token)
        self.assertEqual(stored['identity']['userEmail'], 'bob@investor.example')

        entries = self.services.access_log.get_link_access_log(link.id)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].event, EVENT_GRANT_ISSUED)
        self.assertEqual(entries[0].watermark_tracking_code, grant.watermark_tracking_code)

    def test_issue_does_not_count_a_use(self):
        link = self.create_link(max_uses=1)

        self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        self.assertEqual(self.links.get_link_by_id(link.id).current_uses, 0)

    def test_no_watermark(self):
        link = self.create_link(permissions={'apply_watermark': False})

        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        self.assertFalse(grant.watermark_applied)
        self.assertIsNone(grant.watermark_tracking_code)

    def test_unknown_token(self):
        self.assert_refused(NOT_FOUND, 404, 'unknown', 'doc-1', ACTION_VIEW, self.identity)

    def test_revoked_link(self):
        link = self.create_link()
        self.links.revoke_link(link.id, 'Anna Admin')

        self.assert_refused(REVOKED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)

    def test_password_checked(self):
        link = self.create_link(password='secret')

        error = self.assert_refused(PASSWORD_REQUIRED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.assertTrue(error.extra['requires_password'])
        self.assertIsNotNone(
            self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity, password='secret')
        )

    def test_download_needs_permission(self):
        """Test that the link's permissions gate the action."""
        link = self.create_link()

        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-1', ACTION_DOWNLOAD, self.identity)

        self.links.update_link_permissions(link.id, {'can_download': True})
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_DOWNLOAD, self.identity)
        self.assertEqual(grant.action, ACTION_DOWNLOAD)

    def test_view_needs_permission(self):
        link = self.create_link(permissions={'can_view': False, 'can_download': True})

        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)

    def test_invalid_action(self):
        link = self.create_link()

        self.assert_refused(INVALID_ACTION, 400, link.token, 'doc-1', 'print', self.identity)

    def test_document_scope(self):
        """Test that a document link only serves its document."""
        link = self.create_link(document_id='doc-1')

        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-2', ACTION_VIEW, self.identity)

    def test_folder_scope(self):
        link = self.create_link(folder_id='folder-b')

        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.assertIsNotNone(self.grants.issue_grant(link.token, 'doc-3', ACTION_VIEW, self.identity))

    def test_unknown_document(self):
        link = self.create_link()

        self.assert_refused(DOCUMENT_NOT_FOUND, 404, link.token, 'doc-missing', ACTION_VIEW, self.identity)

    def test_nda_enforced_server_side(self):
        """Test that an NDA link needs a verified signature for the caller's email."""
        link = self.create_link(require_nda=True)

        self.assert_refused(
            NDA_REQUIRED, 403, link.token, 'doc-1', ACTION_VIEW, AccessIdentity(user_name='Guest')
        )
        error = self.assert_refused(NDA_REQUIRED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.assertTrue(error.extra['requires_nda'])

        self.services.nda.sign_nda(
            ROOM_ID, signer_name='Bob Investor', signer_email='bob@investor.example',
            signer_company='Investor LLC'
        )
        self.assertIsNotNone(self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity))

    def test_nda_grant_scope(self):
        link = self.create_link(require_nda=True)
        self.services.nda.sign_nda(
            ROOM_ID, signer_name='Bob Investor', signer_email='bob@investor.example',
            signer_company='Investor LLC', access_scope=SCOPE_SPECIFIC_DOCUMENTS,
            allowed_document_ids=['doc-1']
        )

        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-2', ACTION_VIEW, self.identity)
        self.assertIsNotNone(self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity))

    def test_refusals_logged(self):
        """Test that refusals after link validation reach the access log."""
        link = self.create_link(require_nda=True)
        scoped = self.create_link(folder_id='folder-b')

        self.assert_refused(NDA_REQUIRED, 403, link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.assert_refused(ACCESS_DENIED, 403, link.token, 'doc-1', ACTION_DOWNLOAD, self.identity)
        self.assert_refused(DOCUMENT_NOT_FOUND, 404, link.token, 'doc-missing', ACTION_VIEW, self.identity)
        self.assert_refused(ACCESS_DENIED, 403, scoped.token, 'doc-1', ACTION_VIEW, self.identity)

        entries = self.services.access_log.get_link_access_log(link.id)
        self.assertCountEqual(
            [e.failure_reason for e in entries], [NDA_REQUIRED, ACCESS_DENIED, DOCUMENT_NOT_FOUND]
        )
        self.assertFalse(any(e.success for e in entries))
        denied = next(e for e in entries if e.failure_reason == ACCESS_DENIED)
        self.assertEqual(denied.document_id, 'doc-1')
        self.assertEqual(denied.action, ACTION_DOWNLOAD)
        self.assertEqual(denied.user_email, 'bob@investor.example')

        scoped_entries = self.services.access_log.get_link_access_log(scoped.id)
        self.assertEqual([e.failure_reason for e in scoped_entries], [ACCESS_DENIED])

    def test_redeem_refusal_logged(self):
        link = self.create_link(require_nda=True)
        signature, _ = self.services.nda.sign_nda(
            ROOM_ID, signer_name='Bob Investor', signer_email='bob@investor.example',
            signer_company='Investor LLC'
        )
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.services.nda.revoke_signature(ROOM_ID, signature.id)

        with self.assertRaises(AccessGrantError):
            self.grants.redeem_grant(link.token, grant.id)

        failures = [e for e in self.services.access_log.get_link_access_log(link.id) if not e.success]
        self.assertEqual([e.failure_reason for e in failures], [NDA_REQUIRED])
        self.assertEqual(failures[0].document_id, 'doc-1')

    def test_grant_id_collision_retried(self):
        link = self.create_link()
        first = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        with patch(
            'business_modules.data_rooms.services.access_grant_service.uuid.uuid4',
            side_effect=[first.id.replace('slink-access-', ''), 'second-id', 'log-entry-id']
        ):
            second = self.grants.issue_grant(link.token, 'doc-2', ACTION_VIEW, self.identity)

        self.assertEqual(second.id, 'slink-access-second-id')
        self.assertEqual(self.grants.get_grant(first.id).document_id, 'doc-1')

    def test_redeem_grant(self):
        """Test redeeming a grant for a presigned URL."""
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        redemption = self.grants.redeem_grant(link.token, grant.id, ip_address='10.0.0.1', user_agent='pytest')

        self.assertEqual(redemption.url, PRESIGNED_URL)
        self.assertEqual(redemption.document.id, 'doc-1')
        self.assertIsNotNone(self.grants.get_grant(grant.id).consumed_at)

        params = self.s3.generate_presigned_url.call_args.kwargs['Params']
        self.assertEqual(params['Key'], 'rooms/room-1/doc-1.xlsx')
        self.assertEqual(params['ResponseContentDisposition'], 'inline')

        activities = self.services.access_log.get_activities_by_room(ROOM_ID)
        self.assertEqual(len(activities), 1)
        self.assertEqual(activities[0].action, VIEW_DOCUMENT)
        self.assertEqual(activities[0].access_method, 'shared_link')
        self.assertEqual(activities[0].user_id, external_user_id('bob@investor.example'))
        self.assertEqual(activities[0].watermark_tracking_code, grant.watermark_tracking_code)
        self.assertEqual(activities[0].ip_address, '10.0.0.1')

    def test_redeem_download(self):
        link = self.create_link(permissions={'can_download': True})
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_DOWNLOAD, self.identity)

        self.grants.redeem_grant(link.token, grant.id)

        params = self.s3.generate_presigned_url.call_args.kwargs['Params']
        self.assertEqual(params['ResponseContentDisposition'], 'attachment; filename="doc-1.xlsx"')
        self.assertEqual(
            self.services.access_log.get_activities_by_room(ROOM_ID)[0].action, DOWNLOAD_DOCUMENT
        )

    def test_redeem_watermarked_pdf(self):
        """Test that a watermarked PDF is stamped instead of redirected."""
        seed_pdf_document(self.backend)
        self.s3.get_object.return_value = {'Body': io.BytesIO(make_pdf())}
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-pdf', ACTION_VIEW, self.identity)

        redemption = self.grants.redeem_grant(link.token, grant.id)

        self.assertIsNone(redemption.url)
        self.assertTrue(redemption.content.startswith(b'%PDF'))
        text = PdfReader(io.BytesIO(redemption.content)).pages[0].extract_text()
        self.assertIn(f'REF: {grant.watermark_tracking_code}', text)
        self.assertIn('Bob Investor | Fund I | bob@investor.example', text)
        self.s3.get_object.assert_called_once_with(
            Bucket='test-data-room-bucket', Key='rooms/room-1/term-sheet.pdf'
        )
        self.s3.generate_presigned_url.assert_not_called()

        activity = self.services.access_log.get_activities_by_room(ROOM_ID)[0]
        self.assertTrue(activity.watermark_applied)
        self.assertEqual(activity.watermark_tracking_code, grant.watermark_tracking_code)

    def test_unwatermarked_pdf_redirected(self):
        seed_pdf_document(self.backend)
        link = self.create_link(permissions={'apply_watermark': False})
        grant = self.grants.issue_grant(link.token, 'doc-pdf', ACTION_VIEW, self.identity)

        redemption = self.grants.redeem_grant(link.token, grant.id)

        self.assertEqual(redemption.url, PRESIGNED_URL)
        self.assertIsNone(redemption.content)
        self.s3.get_object.assert_not_called()

    def test_watermarked_pdf_storage_failure(self):
        seed_pdf_document(self.backend)
        self.s3.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'missing'}}, 'GetObject'
        )
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-pdf', ACTION_VIEW, self.identity)

        with self.assertRaises(ContentUnavailable):
            self.grants.redeem_grant(link.token, grant.id)

    def test_redeem_with_verified_session(self):
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        session = AccessIdentity(user_name='Anna Admin', user_email='anna@fund.example', verified=True)

        self.grants.redeem_grant(link.token, grant.id, session_identity=session)

        activity = self.services.access_log.get_activities_by_room(ROOM_ID)[0]
        self.assertEqual(activity.user_id, 'anna@fund.example')
        self.assertEqual(activity.user_name, 'Anna Admin')

    def test_grant_redeemed_once(self):
        """Test single use."""
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.grants.redeem_grant(link.token, grant.id)

        with self.assertRaises(AccessGrantError) as ctx:
            self.grants.redeem_grant(link.token, grant.id)

        self.assertEqual(ctx.exception.reason, CONSUMED)
        self.assertEqual(ctx.exception.status_code, 410)

    def test_grant_gone_after_ttl(self):
        """Test that the store evicts a grant after its ttl."""
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        with patch('business_modules.data_rooms.persistence.backends.time.time', return_value=grant.ttl + 1):
            with self.assertRaises(AccessGrantError) as ctx:
                self.grants.redeem_grant(link.token, grant.id)

        self.assertEqual(ctx.exception.reason, NOT_FOUND)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_grant_bound_to_token(self):
        link = self.create_link()
        other = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)

        with self.assertRaises(AccessGrantError) as ctx:
            self.grants.redeem_grant(other.token, grant.id)

        self.assertEqual(ctx.exception.status_code, 404)

    def test_redeem_rechecks_link(self):
        """Test that a link revoked after issuance blocks delivery."""
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.links.revoke_link(link.id, 'Anna Admin')

        with self.assertRaises(AccessGrantError) as ctx:
            self.grants.redeem_grant(link.token, grant.id)

        self.assertEqual(ctx.exception.reason, REVOKED)
        self.s3.generate_presigned_url.assert_not_called()

    def test_redeem_password_link(self):
        """Test that redemption does not ask for the password again."""
        link = self.create_link(password='secret')
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity, password='secret')

        self.assertEqual(self.grants.redeem_grant(link.token, grant.id).url, PRESIGNED_URL)

    def test_redeem_rechecks_nda(self):
        link = self.create_link(require_nda=True)
        signature, _ = self.services.nda.sign_nda(
            ROOM_ID, signer_name='Bob Investor', signer_email='bob@investor.example',
            signer_company='Investor LLC'
        )
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.services.nda.revoke_signature(ROOM_ID, signature.id)

        with self.assertRaises(AccessGrantError) as ctx:
            self.grants.redeem_grant(link.token, grant.id)

        self.assertEqual(ctx.exception.reason, NDA_REQUIRED)

    def test_content_unavailable(self):
        link = self.create_link()
        grant = self.grants.issue_grant(link.token, 'doc-1', ACTION_VIEW, self.identity)
        self.s3.generate_presigned_url.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'GetObject'
        )

        with self.assertRaises(ContentUnavailable):
            self.grants.redeem_grant(link.token, grant.id)
