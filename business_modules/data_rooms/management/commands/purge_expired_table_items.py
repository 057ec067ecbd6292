"""
Management command to delete table items whose ttl has passed.

DynamoDB evicts expired items by itself; the database backend only hides
them, so schedule this command when DATA_ROOMS_TABLE_BACKEND is 'django'.

Usage:
    python manage.py purge_expired_table_items
"""

from django.core.management.base import BaseCommand, CommandError

from business_modules.data_rooms.exceptions import PersistenceError
from business_modules.data_rooms.persistence import get_table_backend
from business_modules.data_rooms.persistence.backends import DjangoTableBackend


class Command(BaseCommand):
    help = 'Delete expired data room table items'

    def handle(self, *args, **options):
        backend = get_table_backend()
        if not isinstance(backend, DjangoTableBackend):
            self.stdout.write(self.style.WARNING(
                f'{type(backend).__name__} evicts expired items itself, nothing to purge'
            ))
            return

        try:
            deleted = backend.purge_expired()
        except PersistenceError as e:
            raise CommandError(f'Purge failed: {e}')

        self.stdout.write(self.style.SUCCESS(f'Purged {deleted} expired item(s)'))
