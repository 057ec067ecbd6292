"""Partition and sort key layout of the data room table."""

META = 'META'
LINK_INDEX = 'LINK'


def link_pk(link_id: str) -> str:
    return f"SLINK#{link_id}"


def link_token_pk(token: str) -> str:
    return f"SLINKTOKEN#{token}"


def link_short_code_pk(short_code: str) -> str:
    return f"SLINKSHORT#{short_code.upper()}"


def link_room_pk(room_id: str) -> str:
    return f"SLINKROOM#{room_id}"


def link_room_sk(created_at_iso: str, link_id: str) -> str:
    return f"{created_at_iso}#{link_id}"


def link_access_sk(timestamp_iso: str, entry_id: str) -> str:
    return f"ACCESS#{timestamp_iso}#{entry_id}"


def room_pk(room_id: str) -> str:
    return f"ROOM#{room_id}"


def nda_template_sk(updated_at_iso: str, template_id: str) -> str:
    return f"NDA_TEMPLATE#{updated_at_iso}#{template_id}"


def nda_signature_sk(signed_at_iso: str, signature_id: str) -> str:
    return f"NDA_SIGNATURE#{signed_at_iso}#{signature_id}"


def nda_grant_sk(granted_at_iso: str, grant_id: str) -> str:
    return f"NDA_GRANT#{granted_at_iso}#{grant_id}"


def nda_email_pk(email: str) -> str:
    return f"NDA_EMAIL#{email.lower()}"


def nda_email_sk(room_id: str, grant_id: str) -> str:
    return f"ROOM#{room_id}#{grant_id}"


def access_grant_pk(access_id: str) -> str:
    return f"SLINKACCESS#{access_id}"


def activity_sk(timestamp_iso: str, activity_id: str) -> str:
    return f"ACTIVITY#{timestamp_iso}#{activity_id}"


def document_sk(document_id: str) -> str:
    return f"DOC#{document_id}"


ACCESS_PREFIX = 'ACCESS#'
NDA_TEMPLATE_PREFIX = 'NDA_TEMPLATE#'
NDA_SIGNATURE_PREFIX = 'NDA_SIGNATURE#'
NDA_GRANT_PREFIX = 'NDA_GRANT#'
ACTIVITY_PREFIX = 'ACTIVITY#'
DOCUMENT_PREFIX = 'DOC#'
