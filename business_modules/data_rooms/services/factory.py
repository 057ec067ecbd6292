"""Process-wide data room service objects sharing one table backend."""

from dataclasses import dataclass
from functools import lru_cache

from ..persistence import get_table_backend
from .access_grant_service import AccessGrantService
from .access_log_service import AccessLogService
from .link_service import SharedLinkService
from .link_validator import LinkValidator
from .nda_service import NdaService
from .room_directory import BaseRoomDirectory, get_room_directory


@dataclass
class DataRoomServices:
    links: SharedLinkService
    validator: LinkValidator
    nda: NdaService
    grants: AccessGrantService
    access_log: AccessLogService
    directory: BaseRoomDirectory


@lru_cache(maxsize=None)
def get_services() -> DataRoomServices:
    """
    Build the service objects once per process.

    Call ``get_services.cache_clear()`` after changing the backend or
    collaborator settings.
    """
    backend = get_table_backend()
    access_log = AccessLogService(backend)
    links = SharedLinkService(backend, access_log=access_log)
    validator = LinkValidator(backend, links=links)
    nda = NdaService(backend)
    directory = get_room_directory()
    grants = AccessGrantService(
        backend, links=links, validator=validator, nda=nda, directory=directory
    )
    return DataRoomServices(
        links=links,
        validator=validator,
        nda=nda,
        grants=grants,
        access_log=access_log,
        directory=directory,
    )
