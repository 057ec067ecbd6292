"""Storage model for the Django-backed single-table persistence backend."""

from django.db import models


class TableItem(models.Model):
    """
    One item of the data room table.

    Items are addressed by (partition key, sort key); every other attribute
    lives in ``data``. ``expires_at`` mirrors the item's ``ttl`` attribute so
    expired items can be hidden on read and purged in bulk.
    """

    partition_key = models.CharField(
        max_length=255,
        help_text="Partition key (e.g. SLINK#<id>)"
    )

    sort_key = models.CharField(
        max_length=255,
        help_text="Sort key (e.g. META or ACCESS#<timestamp>#<uuid>)"
    )

    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Item attributes"
    )

    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the item expires (from its ttl attribute)"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Table Item"
        verbose_name_plural = "Table Items"
        constraints = [
            models.UniqueConstraint(
                fields=['partition_key', 'sort_key'],
                name='data_rooms_tableitem_key'
            ),
        ]

    def __str__(self):
        return f"{self.partition_key} / {self.sort_key}"
