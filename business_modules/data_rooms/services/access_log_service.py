"""
Access log service.

Append-only audit records: one entry per shared link validation attempt or
grant issuance (under the link's partition) and one room activity per
document delivery, NDA signature and similar room-level event (under the
room's partition). Entries are never updated or deleted.
"""

import csv
import io
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .. import keys
from ..entities import (
    EVENT_VALIDATION, AccessLogEntry, RoomActivity, SharedLink, to_iso,
)
from .base import DataRoomService

# Room activity actions
VIEW_DOCUMENT = 'VIEW_DOCUMENT'
DOWNLOAD_DOCUMENT = 'DOWNLOAD_DOCUMENT'
PRINT_DOCUMENT = 'PRINT_DOCUMENT'
SHARE_LINK_CREATED = 'SHARE_LINK_CREATED'
SHARE_LINK_ACCESSED = 'SHARE_LINK_ACCESSED'
NDA_SIGNED = 'NDA_SIGNED'
NDA_REVOKED = 'NDA_REVOKED'
PERMISSION_CHANGED = 'PERMISSION_CHANGED'

CSV_HEADERS = [
    'Timestamp',
    'User',
    'Email',
    'Company',
    'Action',
    'Document',
    'IP Address',
    'Access Method',
    'Shared Link',
    'Watermark Code',
]


class AccessLogService(DataRoomService):
    """Service for writing and reading the data room audit trail."""

    def log_link_access(
        self,
        link: SharedLink,
        success: bool,
        user_email: Optional[str] = None,
        failure_reason: Optional[str] = None,
        event: str = EVENT_VALIDATION,
        document_id: Optional[str] = None,
        action: Optional[str] = None,
        watermark_tracking_code: Optional[str] = None,
    ) -> AccessLogEntry:
        """Append one entry to a link's access log."""
        entry = AccessLogEntry(
            id=str(uuid.uuid4()),
            link_id=link.id,
            room_id=link.room_id,
            timestamp=self.now(),
            success=success,
            event=event,
            user_email=user_email.lower() if user_email else None,
            failure_reason=failure_reason,
            document_id=document_id,
            action=action,
            watermark_tracking_code=watermark_tracking_code,
        )
        item = entry.to_item()
        item.update(
            pk=keys.link_pk(link.id),
            sk=keys.link_access_sk(to_iso(entry.timestamp), entry.id),
        )
        self.backend.put_item(item, if_not_exists=True)

        if not success:
            self._log_operation(
                'Shared link access rejected',
                {'link_id': link.id, 'reason': failure_reason},
                actor=entry.user_email,
                level='warning'
            )
        return entry

    def get_link_access_log(self, link_id: str) -> List[AccessLogEntry]:
        """Get a link's entries, oldest first."""
        items = self.backend.query(keys.link_pk(link_id), sk_prefix=keys.ACCESS_PREFIX)
        return [AccessLogEntry.from_item(item) for item in items]

    def get_link_stats(self, link_id: str) -> Dict[str, Any]:
        """
        Aggregate a link's access log.

        Returns:
            Dict with total/successful/failed counts, unique users by
            lower-cased email, the last access time and a per-day histogram
        """
        entries = self.get_link_access_log(link_id)

        accesses_by_date: Dict[str, int] = OrderedDict()
        unique_users = set()
        successful = 0
        last_access = None

        for entry in entries:
            day = entry.timestamp.date().isoformat()
            accesses_by_date[day] = accesses_by_date.get(day, 0) + 1
            if entry.user_email:
                unique_users.add(entry.user_email.lower())
            if entry.success:
                successful += 1
            if last_access is None or entry.timestamp > last_access:
                last_access = entry.timestamp

        return {
            'total_accesses': len(entries),
            'successful_accesses': successful,
            'failed_accesses': len(entries) - successful,
            'unique_users': len(unique_users),
            'last_access': last_access,
            'accesses_by_date': dict(accesses_by_date),
        }

    def log_activity(
        self,
        room_id: str,
        action: str,
        user_id: str,
        user_name: str,
        user_email: str = '',
        **details
    ) -> RoomActivity:
        """
        Append a room activity.

        Args:
            room_id: Room the activity happened in
            action: Activity action, e.g. VIEW_DOCUMENT
            user_id: Staff user id or the external viewer's email
            user_name: Display name of the actor
            user_email: Email of the actor
            **details: Optional RoomActivity fields (document_id,
                watermark_tracking_code, shared_link_id, ...)
        """
        activity = RoomActivity(
            id=f"activity-{uuid.uuid4()}",
            room_id=room_id,
            action=action,
            timestamp=self.now(),
            user_id=user_id,
            user_name=user_name,
            user_email=(user_email or '').lower(),
            **details
        )
        item = activity.to_item()
        item.update(
            pk=keys.room_pk(room_id),
            sk=keys.activity_sk(to_iso(activity.timestamp), activity.id),
        )
        self.backend.put_item(item, if_not_exists=True)
        self._log_operation(
            'Room activity recorded',
            {'room_id': room_id, 'action': action, 'document_id': activity.document_id},
            actor=activity.user_email or user_name
        )
        return activity

    def get_activities_by_room(
        self,
        room_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[RoomActivity]:
        """Get a room's activities, newest first, optionally filtered."""
        items = self.backend.query(
            keys.room_pk(room_id), sk_prefix=keys.ACTIVITY_PREFIX, ascending=False
        )
        activities = []
        for item in items:
            activity = RoomActivity.from_item(item)
            if start and activity.timestamp < start:
                continue
            if end and activity.timestamp > end:
                continue
            if action and activity.action != action:
                continue
            activities.append(activity)
            if limit and len(activities) >= limit:
                break
        return activities

    def find_by_tracking_code(self, room_id: str, tracking_code: str) -> List[RoomActivity]:
        """Find the deliveries that carried a watermark tracking code."""
        code = (tracking_code or '').strip().upper()
        if not code:
            return []
        return [
            activity for activity in self.get_activities_by_room(room_id)
            if (activity.watermark_tracking_code or '').upper() == code
        ]

    def export_activities_as_csv(
        self,
        room_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> str:
        """Export a room's activities as CSV text."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
        writer.writerow(CSV_HEADERS)

        for activity in self.get_activities_by_room(room_id, start=start, end=end):
            writer.writerow([
                to_iso(activity.timestamp),
                activity.user_name,
                activity.user_email,
                activity.user_company or '',
                activity.action,
                activity.document_name or activity.document_id or '',
                activity.ip_address or '',
                activity.access_method,
                activity.shared_link_id or '',
                activity.watermark_tracking_code or '',
            ])

        return buffer.getvalue()
