"""
Rate limiting for the public data room endpoints.

Shared link endpoints are limited per link token and NDA signing per signer
email, so limits follow the credential rather than the client address.
"""

import hashlib

from rest_framework.throttling import SimpleRateThrottle


class CredentialRateThrottle(SimpleRateThrottle):
    """Base throttle keyed by a hashed credential instead of the client."""

    def get_credential(self, request, view):
        raise NotImplementedError

    def get_cache_key(self, request, view):
        credential = self.get_credential(request, view)
        if not credential:
            return None
        return self.cache_format % {
            'scope': self.scope,
            'ident': hashlib.sha256(credential.encode('utf-8')).hexdigest()
        }


class SharedLinkTokenThrottle(CredentialRateThrottle):
    """Limits requests per shared link token (60/hour by default)."""
    scope = 'shared_link'

    def get_credential(self, request, view):
        return view.kwargs.get('token')


class NdaSignThrottle(CredentialRateThrottle):
    """Limits NDA signing attempts per signer email (5/hour by default)."""
    scope = 'nda_sign'

    def get_credential(self, request, view):
        if request.method != 'POST':
            return None
        data = request.data
        if data.get('action') != 'sign':
            return None
        return (data.get('signerEmail') or 'anonymous').strip().lower()
