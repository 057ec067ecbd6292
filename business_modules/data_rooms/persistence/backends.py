"""
Table Backends

Single-table key-value backends for data room records.

Every item is addressed by a partition key (``pk``) and a sort key (``sk``).
Backends support conditional creates, attribute updates, atomic counters,
range queries by sort-key prefix and per-item expiry through a numeric
``ttl`` attribute (epoch seconds). No secondary indexes are assumed.
"""

import copy
import logging
import threading
import time
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, OperationalError, transaction
from django.db.models import Q
from django.utils import timezone

from ..exceptions import ConditionalCheckFailed, PersistenceError, PersistenceUnavailable

logger = logging.getLogger(__name__)

KEY_ATTRIBUTES = ('pk', 'sk')


def is_expired(item: Dict[str, Any], now: Optional[float] = None) -> bool:
    """Check whether an item's ttl has passed."""
    ttl = item.get('ttl')
    if ttl is None:
        return False
    now = time.time() if now is None else now
    return float(ttl) <= now


class BaseTableBackend:
    """Base table backend"""

    def get_item(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """
        Get a single item.

        Returns:
            The item, or None when it does not exist or its ttl has passed
        """
        raise NotImplementedError

    def put_item(self, item: Dict[str, Any], if_not_exists: bool = False) -> Dict[str, Any]:
        """
        Write a whole item.

        Args:
            item: Item including ``pk`` and ``sk``
            if_not_exists: Fail with ConditionalCheckFailed if the key is taken
        """
        raise NotImplementedError

    def update_item(
        self,
        pk: str,
        sk: str,
        changes: Dict[str, Any],
        condition_absent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Set attributes on an existing item.

        Attributes set to None are removed. The item must exist; when
        ``condition_absent`` is given that attribute must not be set yet.

        Returns:
            The updated item
        """
        raise NotImplementedError

    def increment(self, pk: str, sk: str, attribute: str, amount: int = 1) -> Dict[str, Any]:
        """Atomically add ``amount`` to a numeric attribute and return the item."""
        raise NotImplementedError

    def query(
        self,
        pk: str,
        sk_prefix: Optional[str] = None,
        limit: Optional[int] = None,
        ascending: bool = True
    ) -> List[Dict[str, Any]]:
        """Get the items under a partition key, ordered by sort key."""
        raise NotImplementedError

    def delete_item(self, pk: str, sk: str):
        """Delete an item if it exists."""
        raise NotImplementedError

    @staticmethod
    def _check_key(item: Dict[str, Any]):
        for attribute in KEY_ATTRIBUTES:
            if not item.get(attribute):
                raise PersistenceError(f"Item is missing its '{attribute}' attribute")


class InMemoryTableBackend(BaseTableBackend):
    """
    Process-local table backend.

    Thread-safe; used by tests and local development. State does not survive
    a restart.
    """

    def __init__(self):
        self._items: Dict[tuple, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def get_item(self, pk, sk):
        with self._lock:
            item = self._items.get((pk, sk))
            if item is None or is_expired(item):
                return None
            return copy.deepcopy(item)

    def put_item(self, item, if_not_exists=False):
        self._check_key(item)
        key = (item['pk'], item['sk'])
        with self._lock:
            existing = self._items.get(key)
            if if_not_exists and existing is not None and not is_expired(existing):
                raise ConditionalCheckFailed(f"Item {key[0]} / {key[1]} already exists")
            self._items[key] = copy.deepcopy(item)
            return copy.deepcopy(item)

    def update_item(self, pk, sk, changes, condition_absent=None):
        with self._lock:
            item = self._items.get((pk, sk))
            if item is None or is_expired(item):
                raise ConditionalCheckFailed(f"Item {pk} / {sk} does not exist")
            if condition_absent and item.get(condition_absent) is not None:
                raise ConditionalCheckFailed(f"Attribute '{condition_absent}' is already set")
            _apply_changes(item, changes)
            return copy.deepcopy(item)

    def increment(self, pk, sk, attribute, amount=1):
        with self._lock:
            item = self._items.get((pk, sk))
            if item is None or is_expired(item):
                raise ConditionalCheckFailed(f"Item {pk} / {sk} does not exist")
            item[attribute] = (item.get(attribute) or 0) + amount
            return copy.deepcopy(item)

    def query(self, pk, sk_prefix=None, limit=None, ascending=True):
        with self._lock:
            items = [
                item for (item_pk, item_sk), item in self._items.items()
                if item_pk == pk
                and (not sk_prefix or item_sk.startswith(sk_prefix))
                and not is_expired(item)
            ]
        items.sort(key=lambda i: i['sk'], reverse=not ascending)
        if limit:
            items = items[:limit]
        return copy.deepcopy(items)

    def delete_item(self, pk, sk):
        with self._lock:
            self._items.pop((pk, sk), None)

    def clear(self):
        """Remove every item."""
        with self._lock:
            self._items.clear()


class DjangoTableBackend(BaseTableBackend):
    """
    Table backend on the Django database.

    Items are rows of ``TableItem``; updates and counters run under
    ``select_for_update`` so they are atomic per item.
    """

    def __init__(self):
        from ..models import TableItem
        self.model = TableItem

    def get_item(self, pk, sk):
        with self._errors():
            row = self._live().filter(partition_key=pk, sort_key=sk).first()
        return self._to_item(row) if row else None

    def put_item(self, item, if_not_exists=False):
        self._check_key(item)
        data = _without_keys(item)
        expires_at = _ttl_to_datetime(item.get('ttl'))

        with self._errors():
            if if_not_exists:
                try:
                    with transaction.atomic():
                        # An expired row still holds the key until it is purged
                        self.model.objects.filter(
                            partition_key=item['pk'],
                            sort_key=item['sk'],
                            expires_at__lte=timezone.now()
                        ).delete()
                        self.model.objects.create(
                            partition_key=item['pk'],
                            sort_key=item['sk'],
                            data=data,
                            expires_at=expires_at
                        )
                except IntegrityError:
                    raise ConditionalCheckFailed(f"Item {item['pk']} / {item['sk']} already exists")
            else:
                self.model.objects.update_or_create(
                    partition_key=item['pk'],
                    sort_key=item['sk'],
                    defaults={'data': data, 'expires_at': expires_at}
                )
        return copy.deepcopy(item)

    def update_item(self, pk, sk, changes, condition_absent=None):
        with self._errors(), transaction.atomic():
            row = self._locked_row(pk, sk)
            if condition_absent and row.data.get(condition_absent) is not None:
                raise ConditionalCheckFailed(f"Attribute '{condition_absent}' is already set")
            _apply_changes(row.data, changes)
            row.expires_at = _ttl_to_datetime(row.data.get('ttl'))
            row.save(update_fields=['data', 'expires_at', 'updated_at'])
        return self._to_item(row)

    def increment(self, pk, sk, attribute, amount=1):
        with self._errors(), transaction.atomic():
            row = self._locked_row(pk, sk)
            row.data[attribute] = (row.data.get(attribute) or 0) + amount
            row.save(update_fields=['data', 'updated_at'])
        return self._to_item(row)

    def query(self, pk, sk_prefix=None, limit=None, ascending=True):
        queryset = self._live().filter(partition_key=pk)
        if sk_prefix:
            queryset = queryset.filter(sort_key__startswith=sk_prefix)
        queryset = queryset.order_by('sort_key' if ascending else '-sort_key')
        if limit:
            queryset = queryset[:limit]

        with self._errors():
            return [self._to_item(row) for row in queryset]

    def delete_item(self, pk, sk):
        with self._errors():
            self.model.objects.filter(partition_key=pk, sort_key=sk).delete()

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number of rows removed."""
        with self._errors():
            deleted, _ = self.model.objects.filter(expires_at__lte=timezone.now()).delete()
        return deleted

    def _live(self):
        return self.model.objects.filter(
            Q(expires_at__isnull=True) | Q(expires_at__gt=timezone.now())
        )

    def _locked_row(self, pk, sk):
        row = self._live().select_for_update().filter(partition_key=pk, sort_key=sk).first()
        if row is None:
            raise ConditionalCheckFailed(f"Item {pk} / {sk} does not exist")
        return row

    @staticmethod
    def _to_item(row) -> Dict[str, Any]:
        item = dict(row.data)
        item['pk'] = row.partition_key
        item['sk'] = row.sort_key
        return item

    @staticmethod
    def _errors():
        return _DatabaseErrors()


class _DatabaseErrors:
    """Translate Django database errors into persistence errors."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or isinstance(exc, PersistenceError):
            return False
        if isinstance(exc, OperationalError):
            logger.error(f"Table database unavailable: {str(exc)}")
            raise PersistenceUnavailable(str(exc)) from exc
        if isinstance(exc, DatabaseError):
            logger.error(f"Table database error: {str(exc)}")
            raise PersistenceError(str(exc)) from exc
        return False


class DynamoDBTableBackend(BaseTableBackend):
    """
    Table backend on a DynamoDB table.

    Expects a table with string ``pk``/``sk`` keys and TTL enabled on the
    ``ttl`` attribute. DynamoDB evicts expired items lazily, so expired items
    are also filtered on read.
    """

    UNAVAILABLE_CODES = {
        'ProvisionedThroughputExceededException',
        'RequestLimitExceeded',
        'ThrottlingException',
        'ServiceUnavailable',
        'InternalServerError',
    }

    def __init__(self, table_name: Optional[str] = None, region_name: Optional[str] = None):
        import boto3

        self.table_name = table_name or getattr(settings, 'DATA_ROOMS_TABLE_NAME', 'aifm-datarooms')
        region_name = region_name or getattr(settings, 'DATA_ROOMS_TABLE_REGION', 'eu-north-1')
        self.table = boto3.resource('dynamodb', region_name=region_name).Table(self.table_name)

    def get_item(self, pk, sk):
        with self._errors():
            response = self.table.get_item(Key={'pk': pk, 'sk': sk}, ConsistentRead=True)
        item = response.get('Item')
        if not item:
            return None
        item = _from_dynamo(item)
        return None if is_expired(item) else item

    def put_item(self, item, if_not_exists=False):
        self._check_key(item)
        kwargs = {'Item': _to_dynamo(_without_none(item))}
        if if_not_exists:
            kwargs['ConditionExpression'] = 'attribute_not_exists(pk) AND attribute_not_exists(sk)'
        with self._errors():
            self.table.put_item(**kwargs)
        return copy.deepcopy(item)

    def update_item(self, pk, sk, changes, condition_absent=None):
        names = {}
        values = {}
        set_parts = []
        remove_parts = []
        for index, (attribute, value) in enumerate(changes.items()):
            name = f"#a{index}"
            names[name] = attribute
            if value is None:
                remove_parts.append(name)
            else:
                values[f":v{index}"] = _to_dynamo(value)
                set_parts.append(f"{name} = :v{index}")

        expression = []
        if set_parts:
            expression.append('SET ' + ', '.join(set_parts))
        if remove_parts:
            expression.append('REMOVE ' + ', '.join(remove_parts))

        condition = 'attribute_exists(pk)'
        if condition_absent:
            names['#c'] = condition_absent
            condition += ' AND attribute_not_exists(#c)'

        kwargs = {
            'Key': {'pk': pk, 'sk': sk},
            'UpdateExpression': ' '.join(expression),
            'ConditionExpression': condition,
            'ExpressionAttributeNames': names,
            'ReturnValues': 'ALL_NEW',
        }
        if values:
            kwargs['ExpressionAttributeValues'] = values

        with self._errors():
            response = self.table.update_item(**kwargs)
        return _from_dynamo(response['Attributes'])

    def increment(self, pk, sk, attribute, amount=1):
        with self._errors():
            response = self.table.update_item(
                Key={'pk': pk, 'sk': sk},
                UpdateExpression='ADD #a :n',
                ConditionExpression='attribute_exists(pk)',
                ExpressionAttributeNames={'#a': attribute},
                ExpressionAttributeValues={':n': amount},
                ReturnValues='ALL_NEW'
            )
        return _from_dynamo(response['Attributes'])

    def query(self, pk, sk_prefix=None, limit=None, ascending=True):
        from boto3.dynamodb.conditions import Key

        condition = Key('pk').eq(pk)
        if sk_prefix:
            condition = condition & Key('sk').begins_with(sk_prefix)

        kwargs = {'KeyConditionExpression': condition, 'ScanIndexForward': ascending}
        items = []
        with self._errors():
            while True:
                if limit:
                    kwargs['Limit'] = limit - len(items)
                response = self.table.query(**kwargs)
                items.extend(
                    item for item in map(_from_dynamo, response.get('Items', []))
                    if not is_expired(item)
                )
                last_key = response.get('LastEvaluatedKey')
                if not last_key or (limit and len(items) >= limit):
                    break
                kwargs['ExclusiveStartKey'] = last_key
        return items[:limit] if limit else items

    def delete_item(self, pk, sk):
        with self._errors():
            self.table.delete_item(Key={'pk': pk, 'sk': sk})

    def _errors(self):
        return _BotoErrors(self.UNAVAILABLE_CODES)


class _BotoErrors:
    """Translate botocore errors into persistence errors."""

    def __init__(self, unavailable_codes):
        self.unavailable_codes = unavailable_codes

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        from botocore.exceptions import BotoCoreError, ClientError

        if exc is None:
            return False
        if isinstance(exc, ClientError):
            code = exc.response.get('Error', {}).get('Code', '')
            if code == 'ConditionalCheckFailedException':
                raise ConditionalCheckFailed(str(exc)) from exc
            logger.error(f"DynamoDB error {code}: {str(exc)}")
            if code in self.unavailable_codes:
                raise PersistenceUnavailable(str(exc)) from exc
            raise PersistenceError(str(exc)) from exc
        if isinstance(exc, BotoCoreError):
            logger.error(f"DynamoDB unreachable: {str(exc)}")
            raise PersistenceUnavailable(str(exc)) from exc
        return False


def _apply_changes(item: Dict[str, Any], changes: Dict[str, Any]):
    for attribute, value in changes.items():
        if attribute in KEY_ATTRIBUTES:
            raise PersistenceError("Key attributes cannot be updated")
        if value is None:
            item.pop(attribute, None)
        else:
            item[attribute] = copy.deepcopy(value)


def _without_keys(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in item.items() if k not in KEY_ATTRIBUTES}


def _without_none(value):
    if isinstance(value, dict):
        return {k: _without_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_without_none(v) for v in value]
    return value


def _ttl_to_datetime(ttl) -> Optional[datetime]:
    if ttl is None:
        return None
    return datetime.fromtimestamp(float(ttl), tz=dt_timezone.utc)


def _to_dynamo(value):
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value):
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


_backend_cache: Dict[str, BaseTableBackend] = {}
_backend_lock = threading.Lock()


def get_table_backend(backend_type: Optional[str] = None) -> BaseTableBackend:
    """
    Get the table backend instance.

    Backends are created once per process and shared.

    Args:
        backend_type: Type of backend to use

    Returns:
        BaseTableBackend instance
    """
    if not backend_type:
        backend_type = getattr(settings, 'DATA_ROOMS_TABLE_BACKEND', 'django')

    backends = {
        'memory': InMemoryTableBackend,
        'django': DjangoTableBackend,
        'dynamodb': DynamoDBTableBackend,
    }

    if backend_type not in backends:
        raise PersistenceError(f"Unknown table backend: {backend_type}")

    with _backend_lock:
        if backend_type not in _backend_cache:
            _backend_cache[backend_type] = backends[backend_type]()
        return _backend_cache[backend_type]
