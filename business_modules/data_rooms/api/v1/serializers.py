"""Serializers for the data room sharing API."""

from django.utils import timezone
from rest_framework import serializers

from ...entities import ACCESS_SCOPES, ACTION_DOWNLOAD, ACTION_VIEW, SCOPE_FULL_ROOM
from ...services.link_service import EXPIRY_UNITS, SharedLinkService


class SharedLinkPermissionsSerializer(serializers.Serializer):
    """Link permissions, all optional on input."""

    canView = serializers.BooleanField(source='can_view', required=False)
    canDownload = serializers.BooleanField(source='can_download', required=False)
    canPrint = serializers.BooleanField(source='can_print', required=False)
    applyWatermark = serializers.BooleanField(source='apply_watermark', required=False)
    trackActivity = serializers.BooleanField(source='track_activity', required=False)


class SharedLinkSerializer(serializers.Serializer):
    """Owner view of a shared link. Never exposes the password hash."""

    id = serializers.CharField(read_only=True)
    roomId = serializers.CharField(source='room_id', read_only=True)
    documentId = serializers.CharField(source='document_id', read_only=True)
    folderId = serializers.CharField(source='folder_id', read_only=True)
    scope = serializers.CharField(read_only=True)
    token = serializers.CharField(read_only=True)
    shortCode = serializers.CharField(source='short_code', read_only=True)
    createdBy = serializers.CharField(source='created_by', read_only=True)
    createdByEmail = serializers.CharField(source='created_by_email', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    expiresAt = serializers.DateTimeField(source='expires_at', read_only=True)
    maxUses = serializers.IntegerField(source='max_uses', read_only=True)
    currentUses = serializers.IntegerField(source='current_uses', read_only=True)
    recipientEmail = serializers.CharField(source='recipient_email', read_only=True)
    recipientName = serializers.CharField(source='recipient_name', read_only=True)
    recipientCompany = serializers.CharField(source='recipient_company', read_only=True)
    permissions = SharedLinkPermissionsSerializer(read_only=True)
    requirePassword = serializers.BooleanField(source='require_password', read_only=True)
    requireNda = serializers.BooleanField(source='require_nda', read_only=True)
    ndaTemplateId = serializers.CharField(source='nda_template_id', read_only=True)
    status = serializers.CharField(read_only=True)
    revokedAt = serializers.DateTimeField(source='revoked_at', read_only=True)
    revokedBy = serializers.CharField(source='revoked_by', read_only=True)
    url = serializers.SerializerMethodField()
    shortUrl = serializers.SerializerMethodField()

    def _base_url(self):
        request = self.context.get('request')
        return request.build_absolute_uri('/api/data-rooms/') if request else '/api/data-rooms/'

    def get_url(self, obj):
        return SharedLinkService.get_link_url(obj, self._base_url())

    def get_shortUrl(self, obj):
        return SharedLinkService.get_short_link_url(obj, self._base_url())


class SharedLinkCreateSerializer(serializers.Serializer):
    """Input for creating a shared link."""

    documentId = serializers.CharField(source='document_id', required=False, allow_null=True, allow_blank=True)
    folderId = serializers.CharField(source='folder_id', required=False, allow_null=True, allow_blank=True)
    expiresIn = serializers.ChoiceField(
        source='expires_in', choices=list(EXPIRY_UNITS) + ['custom'], required=False
    )
    expiresInValue = serializers.IntegerField(source='expires_in_value', min_value=1, required=False)
    expiresAt = serializers.DateTimeField(source='expires_at', required=False)
    maxUses = serializers.IntegerField(source='max_uses', min_value=1, required=False, allow_null=True)
    recipientEmail = serializers.EmailField(source='recipient_email', required=False, allow_blank=True)
    recipientName = serializers.CharField(source='recipient_name', required=False, allow_blank=True)
    recipientCompany = serializers.CharField(source='recipient_company', required=False, allow_blank=True)
    permissions = SharedLinkPermissionsSerializer(required=False)
    password = serializers.CharField(required=False, allow_blank=True, write_only=True)
    requireNda = serializers.BooleanField(source='require_nda', required=False, default=False)
    ndaTemplateId = serializers.CharField(source='nda_template_id', required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs.get('document_id') and attrs.get('folder_id'):
            raise serializers.ValidationError("Cannot share both a document and a folder")

        if attrs.get('expires_in') == 'custom' and not attrs.get('expires_at'):
            raise serializers.ValidationError({'expiresAt': "A custom expiry needs expiresAt"})

        expires_at = attrs.get('expires_at')
        if expires_at and expires_at <= timezone.now():
            raise serializers.ValidationError({'expiresAt': "Expiry must be in the future"})

        return attrs


class SharedLinkUpdateSerializer(serializers.Serializer):
    """Input for owner changes: revoke, extend, permissions or password."""

    action = serializers.ChoiceField(choices=['revoke', 'extend'], required=False)
    expiresAt = serializers.DateTimeField(source='expires_at', required=False)
    permissions = SharedLinkPermissionsSerializer(required=False)
    password = serializers.CharField(required=False, allow_blank=True, allow_null=True, write_only=True)

    def validate(self, attrs):
        if attrs.get('action') == 'extend':
            expires_at = attrs.get('expires_at')
            if not expires_at:
                raise serializers.ValidationError({'expiresAt': "Extending a link needs expiresAt"})
            if expires_at <= timezone.now():
                raise serializers.ValidationError({'expiresAt': "Expiry must be in the future"})

        if not attrs.get('action') and 'permissions' not in attrs and 'password' not in attrs:
            raise serializers.ValidationError("No valid update action provided")
        return attrs


class DocumentAccessRequestSerializer(serializers.Serializer):
    """Input of a view or download request through a shared link."""

    documentId = serializers.CharField(source='document_id')
    action = serializers.ChoiceField(choices=[ACTION_VIEW, ACTION_DOWNLOAD])
    userName = serializers.CharField(source='user_name', required=False, allow_blank=True, max_length=200)
    userEmail = serializers.EmailField(source='user_email', required=False, allow_blank=True)
    password = serializers.CharField(required=False, allow_blank=True, write_only=True)


class NdaTemplateSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    roomId = serializers.CharField(source='room_id', read_only=True)
    name = serializers.CharField(read_only=True)
    version = serializers.CharField(read_only=True)
    content = serializers.CharField(read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    createdBy = serializers.CharField(source='created_by', read_only=True)
    isActive = serializers.BooleanField(source='is_active', read_only=True)
    requireSignature = serializers.BooleanField(source='require_signature', read_only=True)
    requireInitials = serializers.BooleanField(source='require_initials', read_only=True)
    requireFullName = serializers.BooleanField(source='require_full_name', read_only=True)
    requireEmail = serializers.BooleanField(source='require_email', read_only=True)
    requireCompany = serializers.BooleanField(source='require_company', read_only=True)
    requireTitle = serializers.BooleanField(source='require_title', read_only=True)
    customFields = serializers.ListField(source='custom_fields', read_only=True)


class NdaTemplateCreateSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=200)
    content = serializers.CharField()
    requireSignature = serializers.BooleanField(source='require_signature', required=False, default=True)
    requireInitials = serializers.BooleanField(source='require_initials', required=False, default=False)
    requireFullName = serializers.BooleanField(source='require_full_name', required=False, default=True)
    requireEmail = serializers.BooleanField(source='require_email', required=False, default=True)
    requireCompany = serializers.BooleanField(source='require_company', required=False, default=True)
    requireTitle = serializers.BooleanField(source='require_title', required=False, default=False)
    customFields = serializers.ListField(
        source='custom_fields', child=serializers.DictField(), required=False
    )


class NdaSignatureSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    templateId = serializers.CharField(source='template_id', read_only=True)
    templateVersion = serializers.CharField(source='template_version', read_only=True)
    roomId = serializers.CharField(source='room_id', read_only=True)
    signerName = serializers.CharField(source='signer_name', read_only=True)
    signerEmail = serializers.CharField(source='signer_email', read_only=True)
    signerCompany = serializers.CharField(source='signer_company', read_only=True)
    signerTitle = serializers.CharField(source='signer_title', read_only=True)
    signedAt = serializers.DateTimeField(source='signed_at', read_only=True)
    documentHash = serializers.CharField(source='document_hash', read_only=True)
    signatureHash = serializers.CharField(source='signature_hash', read_only=True)
    status = serializers.CharField(read_only=True)
    expiresAt = serializers.DateTimeField(source='expires_at', read_only=True)
    revokedAt = serializers.DateTimeField(source='revoked_at', read_only=True)


class NdaAccessGrantSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    signatureId = serializers.CharField(source='signature_id', read_only=True)
    roomId = serializers.CharField(source='room_id', read_only=True)
    userEmail = serializers.CharField(source='user_email', read_only=True)
    grantedAt = serializers.DateTimeField(source='granted_at', read_only=True)
    expiresAt = serializers.DateTimeField(source='expires_at', read_only=True)
    accessScope = serializers.CharField(source='access_scope', read_only=True)
    allowedDocumentIds = serializers.ListField(source='allowed_document_ids', read_only=True)
    allowedFolderIds = serializers.ListField(source='allowed_folder_ids', read_only=True)
    isActive = serializers.BooleanField(source='is_active', read_only=True)


class NdaVerificationSerializer(serializers.Serializer):
    valid = serializers.BooleanField(read_only=True)
    error = serializers.CharField(read_only=True)
    signature = NdaSignatureSerializer(read_only=True)
    accessGrant = NdaAccessGrantSerializer(source='access_grant', read_only=True)
    templateVersion = serializers.SerializerMethodField()

    def get_templateVersion(self, obj):
        return obj.template.version if obj.template else None


class NdaSignSerializer(serializers.Serializer):
    """Input for signing a room's NDA."""

    signerName = serializers.CharField(source='signer_name', max_length=200)
    signerEmail = serializers.EmailField(source='signer_email')
    signerCompany = serializers.CharField(source='signer_company', required=False, allow_blank=True)
    signerTitle = serializers.CharField(source='signer_title', required=False, allow_blank=True)
    signatureImage = serializers.CharField(source='signature_image', required=False, allow_blank=True)
    initials = serializers.CharField(required=False, allow_blank=True, max_length=10)
    customFieldValues = serializers.DictField(source='custom_field_values', required=False)
    accessScope = serializers.ChoiceField(
        source='access_scope', choices=list(ACCESS_SCOPES), required=False, default=SCOPE_FULL_ROOM
    )
    allowedDocumentIds = serializers.ListField(
        source='allowed_document_ids', child=serializers.CharField(), required=False
    )
    allowedFolderIds = serializers.ListField(
        source='allowed_folder_ids', child=serializers.CharField(), required=False
    )
    accessExpiresIn = serializers.IntegerField(source='access_expires_in', min_value=1, required=False)
    templateId = serializers.CharField(source='template_id', required=False, allow_blank=True)


class ActivitySerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    action = serializers.CharField(read_only=True)
    timestamp = serializers.DateTimeField(read_only=True)
    userName = serializers.CharField(source='user_name', read_only=True)
    userEmail = serializers.CharField(source='user_email', read_only=True)
    documentId = serializers.CharField(source='document_id', read_only=True)
    sharedLinkId = serializers.CharField(source='shared_link_id', read_only=True)
    watermarkTrackingCode = serializers.CharField(source='watermark_tracking_code', read_only=True)
