"""Single-table persistence for data room records."""

from .backends import (
    BaseTableBackend,
    InMemoryTableBackend,
    DjangoTableBackend,
    DynamoDBTableBackend,
    get_table_backend,
)

__all__ = [
    'BaseTableBackend',
    'InMemoryTableBackend',
    'DjangoTableBackend',
    'DynamoDBTableBackend',
    'get_table_backend',
]
