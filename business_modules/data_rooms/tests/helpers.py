"""Shared fixtures for data room tests."""

import io

from django.core.cache import cache
from django.test import TestCase
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .. import keys
from ..persistence import get_table_backend
from ..services.factory import get_services

ROOM_ID = 'room-1'
OTHER_ROOM_ID = 'room-2'
XLSX_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def seed_room(backend, room_id=ROOM_ID, name='Fund I Data Room', documents=()):
    """Write a room and its documents the way the room editor stores them."""
    backend.put_item({
        'pk': keys.room_pk(room_id),
        'sk': keys.META,
        'id': room_id,
        'name': name,
        'description': 'Due diligence materials',
        'fundName': 'Fund I',
    })
    for document in documents:
        item = {
            'pk': keys.room_pk(room_id),
            'sk': keys.document_sk(document['id']),
            'roomId': room_id,
            'name': document['id'],
            'fileName': f"{document['id']}.xlsx",
            'fileType': XLSX_TYPE,
            'fileSize': 1024,
            's3Key': f"rooms/{room_id}/{document['id']}.xlsx",
            'status': 'ACTIVE',
        }
        item.update(document)
        backend.put_item(item)


def make_pdf(pages=1, text='Confidential term sheet'):
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    for number in range(pages):
        c.drawString(72, 720, f"{text} page {number + 1}")
        c.showPage()
    c.save()
    return buffer.getvalue()


def seed_pdf_document(backend, document_id='doc-pdf', room_id=ROOM_ID):
    seed_room(backend, room_id=room_id, documents=[{
        'id': document_id,
        'folderId': 'folder-a',
        'name': 'Term sheet',
        'fileName': 'term-sheet.pdf',
        'fileType': 'application/pdf',
        's3Key': f"rooms/{room_id}/term-sheet.pdf",
    }])


class DataRoomTestCase(TestCase):
    """Runs against a fresh in-memory table with one seeded room."""

    def setUp(self):
        self.backend = get_table_backend('memory')
        self.backend.clear()
        get_services.cache_clear()
        cache.clear()

        seed_room(self.backend, documents=[
            {'id': 'doc-1', 'folderId': 'folder-a'},
            {'id': 'doc-2', 'folderId': 'folder-a'},
            {'id': 'doc-3', 'folderId': 'folder-b'},
            {'id': 'doc-archived', 'folderId': 'folder-a', 'status': 'ARCHIVED'},
        ])
        self.services = get_services()

    def tearDown(self):
        get_services.cache_clear()
