"""
Room directory.

Read-only view of rooms and their documents. Rooms, folders and documents
are created and edited elsewhere; this module only resolves what a shared
link points at.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from .. import keys
from ..persistence import get_table_backend

DOCUMENT_ACTIVE = 'ACTIVE'


@dataclass
class RoomInfo:
    id: str
    name: str
    description: str = ''
    fund_name: Optional[str] = None


@dataclass
class DocumentInfo:
    id: str
    room_id: str
    name: str
    file_name: str = ''
    file_type: str = ''
    file_size: int = 0
    folder_id: Optional[str] = None
    storage_key: str = ''
    status: str = DOCUMENT_ACTIVE

    def summary(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'fileName': self.file_name,
            'fileType': self.file_type,
            'fileSize': self.file_size,
        }


class BaseRoomDirectory:
    """Base room directory"""

    def get_room(self, room_id: str) -> Optional[RoomInfo]:
        raise NotImplementedError

    def get_document(self, room_id: str, document_id: str) -> Optional[DocumentInfo]:
        raise NotImplementedError

    def get_documents(self, room_id: str) -> List[DocumentInfo]:
        """Get a room's active documents."""
        raise NotImplementedError

    def get_documents_in_scope(
        self,
        room_id: str,
        document_id: Optional[str] = None,
        folder_id: Optional[str] = None
    ) -> List[DocumentInfo]:
        """Get the documents a link scope covers."""
        if document_id:
            document = self.get_document(room_id, document_id)
            return [document] if document and document.status == DOCUMENT_ACTIVE else []
        documents = self.get_documents(room_id)
        if folder_id:
            return [d for d in documents if d.folder_id == folder_id]
        return documents


class TableRoomDirectory(BaseRoomDirectory):
    """
    Room directory reading the records kept in the data room table.

    Rooms live at ``ROOM#{id}`` / ``META`` and documents at
    ``ROOM#{id}`` / ``DOC#{docId}``.
    """

    def __init__(self, backend=None):
        self.backend = backend or get_table_backend()

    def get_room(self, room_id):
        item = self.backend.get_item(keys.room_pk(room_id), keys.META)
        if not item:
            return None
        return RoomInfo(
            id=item.get('id', room_id),
            name=item.get('name', ''),
            description=item.get('description') or '',
            fund_name=item.get('fundName'),
        )

    def get_document(self, room_id, document_id):
        item = self.backend.get_item(keys.room_pk(room_id), keys.document_sk(document_id))
        return self._to_document(room_id, item) if item else None

    def get_documents(self, room_id):
        items = self.backend.query(keys.room_pk(room_id), sk_prefix=keys.DOCUMENT_PREFIX)
        documents = [self._to_document(room_id, item) for item in items]
        return [d for d in documents if d.status == DOCUMENT_ACTIVE]

    @staticmethod
    def _to_document(room_id: str, item: Dict[str, Any]) -> DocumentInfo:
        return DocumentInfo(
            id=item['id'],
            room_id=item.get('roomId', room_id),
            name=item.get('name', ''),
            file_name=item.get('fileName', ''),
            file_type=item.get('fileType', ''),
            file_size=int(item.get('fileSize') or 0),
            folder_id=item.get('folderId'),
            storage_key=item.get('s3Key', ''),
            status=item.get('status', DOCUMENT_ACTIVE),
        )


def get_room_directory() -> BaseRoomDirectory:
    """Get the configured room directory."""
    path = getattr(
        settings,
        'DATA_ROOMS_ROOM_DIRECTORY',
        'business_modules.data_rooms.services.room_directory.TableRoomDirectory'
    )
    return import_string(path)()
