"""
Shared link validator.

Runs the ordered check pipeline for a presented token. Each check
short-circuits with its own failure reason:

1. the token resolves to a link (``not_found``)
2. the link is not revoked (``revoked``)
3. the link is not exhausted (``exhausted``)
4. the link has not expired (``expired``)
5. the usage cap is not reached (``exhausted``)
6. the caller's email matches the recipient restriction (``wrong_email``)
7. the password matches (``password_required``)
8. the NDA has been signed (``nda_required``)

Steps 4 and 5 come from the link's effective status, which the link service
computes and persists on read. The recipient check runs before the password
and NDA checks so an unauthorized recipient learns nothing about them.
"""

from typing import Optional

from ..entities import (
    EXHAUSTED, EXPIRED, LINK_EXHAUSTED, LINK_EXPIRED, LINK_REVOKED,
    NDA_REQUIRED, NOT_FOUND, PASSWORD_REQUIRED, REVOKED, WRONG_EMAIL,
    ValidateLinkResult,
)
from .base import DataRoomService, mask_secret
from .link_service import SharedLinkService

STATUS_FAILURES = {
    LINK_REVOKED: REVOKED,
    LINK_EXHAUSTED: EXHAUSTED,
    LINK_EXPIRED: EXPIRED,
}


class LinkValidator(DataRoomService):
    """Validates shared link tokens against their constraints."""

    def __init__(self, backend=None, context=None, links: Optional[SharedLinkService] = None):
        super().__init__(backend, context)
        self.links = links or SharedLinkService(self.backend, self.context)

    def validate_link(
        self,
        token: str,
        user_email: Optional[str] = None,
        password: Optional[str] = None,
        nda_signed: bool = False,
        skip_nda_check: bool = False,
        skip_password_check: bool = False
    ) -> ValidateLinkResult:
        """
        Check a token.

        Args:
            token: Secret link token
            user_email: Email the caller claims or was verified with
            password: Password supplied by the caller
            nda_signed: Whether the caller's NDA signature was verified
            skip_nda_check: Defer the NDA check to the caller
            skip_password_check: The password was already checked when the
                caller's access grant was issued

        Returns:
            ValidateLinkResult with the failure reason or the resolved link
        """
        link = self.links.get_link_by_token(token)
        if link is None:
            return ValidateLinkResult(valid=False, error=NOT_FOUND)

        if link.status in STATUS_FAILURES:
            return ValidateLinkResult(valid=False, error=STATUS_FAILURES[link.status], link=link)

        if link.recipient_email and (user_email or '').strip().lower() != link.recipient_email:
            return ValidateLinkResult(valid=False, error=WRONG_EMAIL, link=link)

        if link.require_password and not skip_password_check:
            if not self.links.check_password(link, password):
                return ValidateLinkResult(
                    valid=False, error=PASSWORD_REQUIRED, link=link, requires_password=True
                )

        if link.require_nda and not skip_nda_check and not nda_signed:
            return ValidateLinkResult(
                valid=False,
                error=NDA_REQUIRED,
                link=link,
                requires_nda=True,
                nda_template_id=link.nda_template_id,
            )

        return ValidateLinkResult(valid=True, link=link)

    def validate_and_record(
        self,
        token: str,
        user_email: Optional[str] = None,
        password: Optional[str] = None,
        nda_signed: bool = False,
        skip_nda_check: bool = False,
        skip_password_check: bool = False
    ) -> ValidateLinkResult:
        """
        Validate a token and write every failure to the access log.

        Failures for unknown tokens have no link to log under and only go
        to the application log.
        """
        result = self.validate_link(
            token,
            user_email=user_email,
            password=password,
            nda_signed=nda_signed,
            skip_nda_check=skip_nda_check,
            skip_password_check=skip_password_check,
        )
        if result.valid:
            return result

        if result.link is None:
            self._log_operation(
                'Shared link token not found',
                {'token': mask_secret(token)},
                actor=user_email,
                level='warning'
            )
        else:
            self.links.access_log.log_link_access(
                result.link, False, user_email=user_email, failure_reason=result.error
            )
        return result
