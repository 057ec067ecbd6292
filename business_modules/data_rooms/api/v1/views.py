"""API views for data room sharing."""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import HttpResponse, HttpResponseRedirect
from django.urls import reverse
from django.utils.dateparse import parse_datetime
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from ...entities import (
    NDA_REQUIRED, NOT_FOUND, PASSWORD_REQUIRED, RATE_LIMITED, to_iso,
)
from ...exceptions import (
    AccessGrantError, ContentUnavailable, LinkNotFound, NdaTemplateNotFound,
    PersistenceError, PersistenceUnavailable, SignatureNotFound,
)
from ...services import resolve_identity
from ...services.access_grant_service import external_user_id
from ...services.access_log_service import NDA_REVOKED, NDA_SIGNED, SHARE_LINK_CREATED
from ...services.base import mask_secret
from ...services.content import content_disposition
from ...services.factory import get_services
from .serializers import (
    ActivitySerializer, DocumentAccessRequestSerializer, NdaSignSerializer,
    NdaSignatureSerializer, NdaAccessGrantSerializer, NdaTemplateCreateSerializer,
    NdaTemplateSerializer, NdaVerificationSerializer, SharedLinkCreateSerializer,
    SharedLinkPermissionsSerializer, SharedLinkSerializer, SharedLinkUpdateSerializer,
)
from .throttling import NdaSignThrottle, SharedLinkTokenThrottle

logger = logging.getLogger(__name__)

ROOM_NOT_FOUND = 'room_not_found'


def client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def actor_name(user):
    full_name = user.get_full_name() if hasattr(user, 'get_full_name') else ''
    return full_name or getattr(user, 'email', '') or str(user)


def stats_representation(stats):
    if stats is None:
        return None
    return {
        'totalAccesses': stats['total_accesses'],
        'successfulAccesses': stats['successful_accesses'],
        'failedAccesses': stats['failed_accesses'],
        'uniqueUsers': stats['unique_users'],
        'lastAccess': to_iso(stats['last_access']),
        'accessesByDate': stats['accesses_by_date'],
    }


class DataRoomAPIView(APIView):
    """
    Base view mapping data room errors onto responses.

    The store being unreachable yields 503, so nothing is granted while
    persistence is down.
    """

    @property
    def services(self):
        return get_services()

    def handle_exception(self, exc):
        if isinstance(exc, PersistenceUnavailable):
            logger.error(f"Data room store unavailable: {exc}")
            return Response(
                {'error': 'service_unavailable', 'message': 'Service temporarily unavailable'},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        if isinstance(exc, PersistenceError):
            logger.error(f"Data room store error: {exc}", exc_info=True)
            return Response(
                {'error': 'internal_error', 'message': 'Internal server error'},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        if isinstance(exc, AccessGrantError):
            body = {'valid': False, 'error': exc.reason, 'message': str(exc)}
            if exc.extra.get('requires_password'):
                body['requiresPassword'] = True
            if exc.extra.get('requires_nda'):
                body['requiresNda'] = True
            return Response(body, status=exc.status_code)
        if isinstance(exc, (LinkNotFound, SignatureNotFound, NdaTemplateNotFound)):
            return Response({'error': NOT_FOUND, 'message': str(exc)}, status=status.HTTP_404_NOT_FOUND)
        if isinstance(exc, DjangoValidationError):
            detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
            return Response({'error': 'invalid', 'detail': detail}, status=status.HTTP_400_BAD_REQUEST)
        if isinstance(exc, ContentUnavailable):
            logger.error(f"Content unavailable: {exc}")
            return Response(
                {'error': 'content_unavailable', 'message': 'Document content is unavailable'},
                status=status.HTTP_503_SERVICE_UNAVAILABLE
            )
        return super().handle_exception(exc)

    def get_room_or_404(self, room_id):
        room = self.services.directory.get_room(room_id)
        if room is None:
            return None, Response(
                {'error': ROOM_NOT_FOUND, 'message': 'Data room not found'},
                status=status.HTTP_404_NOT_FOUND
            )
        return room, None


class SharedLinkAccessView(DataRoomAPIView):
    """
    Public shared link endpoint.

    GET validates the link and describes what it shares. POST authorizes a
    view or download of one document and returns a one-time redemption URL.
    """
    permission_classes = [AllowAny]
    throttle_classes = [SharedLinkTokenThrottle]

    def throttled(self, request, wait):
        link = self.services.links.get_link_by_token(self.kwargs.get('token'))
        if link is not None:
            self.services.access_log.log_link_access(
                link, False,
                user_email=request.query_params.get('email'),
                failure_reason=RATE_LIMITED
            )
        super().throttled(request, wait)

    def get(self, request, token):
        user_email = request.query_params.get('email') or None
        password = request.query_params.get('password') or None

        validation = self.services.validator.validate_and_record(
            token, user_email=user_email, password=password, skip_nda_check=True
        )
        if not validation.valid:
            # Requirements are only revealed once the recipient check has passed
            body = {
                'valid': False,
                'error': validation.error,
                'requiresPassword': validation.error == PASSWORD_REQUIRED,
                'requiresNda': validation.error == NDA_REQUIRED,
            }
            return Response(
                body,
                status=status.HTTP_404_NOT_FOUND if validation.error == NOT_FOUND else status.HTTP_403_FORBIDDEN
            )

        link = validation.link
        room, error_response = self.get_room_or_404(link.room_id)
        if error_response:
            return error_response

        self.services.links.record_access(link.id, user_email=user_email, success=True)

        documents = self.services.directory.get_documents_in_scope(
            link.room_id, document_id=link.document_id, folder_id=link.folder_id
        )

        nda_info = None
        nda_verified = False
        if link.require_nda:
            nda_info = self.services.nda.get_active_template_for_room(link.room_id).descriptor()
            if user_email:
                nda_verified = self.services.nda.verify_nda_access(link.room_id, user_email).valid

        return Response({
            'valid': True,
            'link': {
                'id': link.id,
                'roomId': link.room_id,
                'roomName': room.name,
                'roomDescription': room.description,
                'expiresAt': to_iso(link.expires_at),
                'permissions': SharedLinkPermissionsSerializer(link.permissions).data,
                'recipientName': link.recipient_name,
                'recipientCompany': link.recipient_company,
                'requireNda': link.require_nda,
            },
            'documents': [document.summary() for document in documents],
            'ndaInfo': nda_info,
            'ndaVerified': nda_verified,
        })

    def post(self, request, token):
        serializer = DocumentAccessRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        identity = resolve_identity(
            request.user, user_name=data.get('user_name'), user_email=data.get('user_email')
        )
        grant = self.services.grants.issue_grant(
            token,
            document_id=data['document_id'],
            action=data['action'],
            identity=identity,
            password=data.get('password') or None,
        )

        body = {
            'url': reverse(
                'data_rooms:shared-link-redeem', kwargs={'token': token, 'access_id': grant.id}
            ),
            'watermarkApplied': grant.watermark_applied,
        }
        if grant.watermark_tracking_code:
            body['watermarkTrackingCode'] = grant.watermark_tracking_code
        return Response(body)


class SharedLinkRedeemView(DataRoomAPIView):
    """Redeems a one-time access grant: serves a watermarked PDF or redirects to storage."""
    permission_classes = [AllowAny]
    throttle_classes = [SharedLinkTokenThrottle]

    def get(self, request, token, access_id):
        session_identity = None
        if request.user and request.user.is_authenticated:
            session_identity = resolve_identity(request.user)

        redemption = self.services.grants.redeem_grant(
            token,
            access_id,
            session_identity=session_identity,
            ip_address=client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT'),
        )
        if redemption.content is not None:
            response = HttpResponse(redemption.content, content_type='application/pdf')
            response['Content-Disposition'] = content_disposition(
                redemption.document, redemption.grant.action
            )
        else:
            response = HttpResponseRedirect(redemption.url)
        response['Cache-Control'] = 'no-store'
        return response


class ShortCodeRedirectView(DataRoomAPIView):
    """Resolves a short code to its shared link."""
    permission_classes = [AllowAny]

    def get(self, request, code):
        link = self.services.links.get_link_by_short_code(code)
        if link is None:
            logger.warning(f"Unknown short code {mask_secret(code, 3)}")
            return Response({'error': NOT_FOUND}, status=status.HTTP_404_NOT_FOUND)
        return HttpResponseRedirect(reverse('data_rooms:shared-link', kwargs={'token': link.token}))


class RoomNdaView(DataRoomAPIView):
    """
    NDA endpoint of a room.

    GET returns the active template, signature statistics and, with
    ``?email=``, that signer's status. POST signs the NDA (public,
    throttled per signer email) or, for authenticated users, creates a
    template or revokes a signature.
    """
    permission_classes = [AllowAny]
    throttle_classes = [NdaSignThrottle]

    def get(self, request, room_id):
        room, error_response = self.get_room_or_404(room_id)
        if error_response:
            return error_response

        nda = self.services.nda
        stats = nda.get_room_nda_stats(room_id)
        user_email = request.query_params.get('email')
        user_status = None
        if user_email:
            user_status = NdaVerificationSerializer(nda.verify_nda_access(room_id, user_email)).data

        return Response({
            'template': NdaTemplateSerializer(nda.get_active_template_for_room(room_id)).data,
            'stats': {
                'totalSignatures': stats['total_signatures'],
                'validSignatures': stats['valid_signatures'],
                'revokedSignatures': stats['revoked_signatures'],
                'expiredSignatures': stats['expired_signatures'],
                'activeGrants': stats['active_grants'],
                'lastSignedAt': to_iso(stats['last_signed_at']),
            },
            'userStatus': user_status,
        })

    def post(self, request, room_id):
        room, error_response = self.get_room_or_404(room_id)
        if error_response:
            return error_response

        action = request.data.get('action')
        if action == 'sign':
            return self._sign(request, room_id)
        if action == 'create_template':
            return self._create_template(request, room_id)
        if action == 'revoke_signature':
            return self._revoke_signature(request, room_id)
        return Response({'error': 'Invalid action'}, status=status.HTTP_400_BAD_REQUEST)

    def _sign(self, request, room_id):
        serializer = NdaSignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ip_address = client_ip(request)
        user_agent = request.META.get('HTTP_USER_AGENT')

        signature, grant = self.services.nda.sign_nda(
            room_id, ip_address=ip_address, user_agent=user_agent, **serializer.validated_data
        )
        self.services.access_log.log_activity(
            room_id,
            NDA_SIGNED,
            user_id=external_user_id(signature.signer_email),
            user_name=signature.signer_name,
            user_email=signature.signer_email,
            user_company=signature.signer_company,
            action_details=f"NDA version {signature.template_version} signed",
            ip_address=ip_address,
            user_agent=user_agent,
            access_method='nda_access',
        )
        return Response({
            'success': True,
            'signature': NdaSignatureSerializer(signature).data,
            'accessGrant': NdaAccessGrantSerializer(grant).data,
        }, status=status.HTTP_201_CREATED)

    def _create_template(self, request, room_id):
        if not request.user or not request.user.is_authenticated:
            raise NotAuthenticated()
        serializer = NdaTemplateCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = dict(serializer.validated_data)
        template = self.services.nda.create_template(
            room_id,
            name=data.pop('name', ''),
            content=data.pop('content'),
            created_by=actor_name(request.user),
            **data
        )
        return Response(
            {'template': NdaTemplateSerializer(template).data},
            status=status.HTTP_201_CREATED
        )

    def _revoke_signature(self, request, room_id):
        if not request.user or not request.user.is_authenticated:
            raise NotAuthenticated()
        signature_id = request.data.get('signatureId')
        if not signature_id:
            return Response({'signatureId': ['This field is required.']}, status=status.HTTP_400_BAD_REQUEST)

        signature = self.services.nda.revoke_signature(
            room_id,
            signature_id,
            reason=request.data.get('reason', ''),
            revoked_by=actor_name(request.user),
        )
        self.services.access_log.log_activity(
            room_id,
            NDA_REVOKED,
            user_id=str(request.user.pk),
            user_name=actor_name(request.user),
            user_email=request.user.email,
            action_details=f"NDA signature of {signature.signer_email} revoked",
        )
        return Response({'signature': NdaSignatureSerializer(signature).data})


class SharedLinkListView(DataRoomAPIView):
    """Lists and creates the shared links of a room."""
    permission_classes = [IsAuthenticated]

    def get(self, request, room_id):
        links = self.services.links.get_links_by_room(room_id)
        return Response({
            'links': SharedLinkSerializer(links, many=True, context={'request': request}).data
        })

    def post(self, request, room_id):
        room, error_response = self.get_room_or_404(room_id)
        if error_response:
            return error_response

        serializer = SharedLinkCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        if data.get('document_id') and self.services.directory.get_document(room_id, data['document_id']) is None:
            return Response(
                {'error': 'document_not_found', 'message': 'Document not found'},
                status=status.HTTP_404_NOT_FOUND
            )
        if data.get('expires_in') == 'custom':
            del data['expires_in']

        link = self.services.links.create_link(
            room_id,
            created_by=actor_name(request.user),
            created_by_email=request.user.email,
            **data
        )
        self.services.access_log.log_activity(
            room_id,
            SHARE_LINK_CREATED,
            user_id=str(request.user.pk),
            user_name=actor_name(request.user),
            user_email=request.user.email,
            document_id=link.document_id,
            shared_link_id=link.id,
            action_details=f"Shared link for {link.scope} created",
        )
        return Response(
            {'link': SharedLinkSerializer(link, context={'request': request}).data},
            status=status.HTTP_201_CREATED
        )


class SharedLinkDetailView(DataRoomAPIView):
    """Owner operations on one shared link."""
    permission_classes = [IsAuthenticated]

    def get_link(self, room_id, link_id):
        link = self.services.links.get_link_by_id(link_id)
        if link is None or link.room_id != room_id:
            raise LinkNotFound(f"Shared link {link_id} not found")
        return link

    def get(self, request, room_id, link_id):
        link = self.get_link(room_id, link_id)
        return Response({
            'link': SharedLinkSerializer(link, context={'request': request}).data,
            'stats': stats_representation(self.services.links.get_link_stats(link_id)),
        })

    def patch(self, request, room_id, link_id):
        self.get_link(room_id, link_id)
        serializer = SharedLinkUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        links = self.services.links

        if data.get('action') == 'revoke':
            link = links.revoke_link(link_id, actor_name(request.user))
            message = 'Link revoked'
        elif data.get('action') == 'extend':
            link = links.extend_link(link_id, data['expires_at'])
            message = 'Link extended'
        elif 'permissions' in data:
            link = links.update_link_permissions(link_id, data['permissions'])
            message = 'Permissions updated'
        else:
            link = links.update_link_password(link_id, data.get('password') or None)
            message = 'Password updated'

        return Response({
            'link': SharedLinkSerializer(link, context={'request': request}).data,
            'message': message,
        })

    def delete(self, request, room_id, link_id):
        self.get_link(room_id, link_id)
        self.services.links.revoke_link(link_id, actor_name(request.user))
        return Response({'success': True, 'message': 'Link revoked'})


class RoomActivityView(DataRoomAPIView):
    """
    Room activity log.

    Supports ``?action=``, ``?start=``/``?end=`` (ISO-8601) and
    ``?trackingCode=`` to attribute a leaked copy to its access event.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, room_id):
        access_log = self.services.access_log
        tracking_code = request.query_params.get('trackingCode')
        if tracking_code:
            activities = access_log.find_by_tracking_code(room_id, tracking_code)
        else:
            start, end = self._parse_range(request)
            activities = access_log.get_activities_by_room(
                room_id, start=start, end=end, action=request.query_params.get('action') or None
            )
        return Response({'activities': ActivitySerializer(activities, many=True).data})

    @staticmethod
    def _parse_range(request):
        bounds = []
        for name in ('start', 'end'):
            value = request.query_params.get(name)
            parsed = parse_datetime(value) if value else None
            if value and parsed is None:
                raise DjangoValidationError({name: 'Invalid ISO-8601 timestamp'})
            bounds.append(parsed)
        return bounds


class RoomActivityExportView(RoomActivityView):
    """Room activity log as a CSV download."""

    def get(self, request, room_id):
        start, end = self._parse_range(request)
        content = self.services.access_log.export_activities_as_csv(room_id, start=start, end=end)
        response = HttpResponse(content, content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="activity-{room_id}.csv"'
        return response
