"""In-app notifications and their out-of-band delivery."""

import logging
from typing import Optional, Tuple

from contracts.schemas.enums import NotificationActionType, NotificationCategory, NotificationPriority
from contracts.schemas.notification import (
    Notification,
    NotificationListData,
    NotificationMetadata,
    ReadAllData,
)
from contracts.schemas.user import NotificationPreferences
from gateway.pagination import FilterSet, Page, paginate
from gateway.services.base import load_owned, mutate, new_id, utcnow
from gateway.services.users import UserService
from gateway.store import DocumentStore

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"

# Preference switch that gates delivery of each category
_CATEGORY_PREFERENCE = {
    NotificationCategory.LAB_REPORT: "report_ready",
    NotificationCategory.HEALTH_INSIGHT: "health_alerts",
    NotificationCategory.ALERT: "health_alerts",
    NotificationCategory.APPOINTMENT: "appointment_reminders",
    NotificationCategory.RECOMMENDATION: "recommendations",
}


class NotificationDispatcher:
    """Delivers a stored notification out of band (push, email, SMS)."""

    async def dispatch(self, notification: Notification, preferences: NotificationPreferences) -> None:
        raise NotImplementedError


class LoggingDispatcher(NotificationDispatcher):
    async def dispatch(self, notification: Notification, preferences: NotificationPreferences) -> None:
        channels = [
            name
            for name, enabled in (
                ("push", preferences.push_enabled),
                ("email", preferences.email_enabled),
                ("sms", preferences.sms_enabled),
            )
            if enabled
        ]
        logger.info(
            f"Notification {notification.id} [{notification.category.value}/{notification.priority.value}] "
            f"for user {notification.user_id} via {', '.join(channels) or 'no channel'}: {notification.title}"
        )


class NotificationService:
    def __init__(self, store: DocumentStore, users: UserService, dispatcher: NotificationDispatcher):
        self.store = store
        self.users = users
        self.dispatcher = dispatcher

    async def create(
        self,
        user_id: str,
        title: str,
        message: str,
        category: NotificationCategory,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        action_type: NotificationActionType = NotificationActionType.NONE,
        subtitle: str = "",
        metadata: Optional[NotificationMetadata] = None,
    ) -> Notification:
        notification = Notification(
            id=new_id(),
            user_id=user_id,
            title=title,
            subtitle=subtitle,
            message=message,
            category=category,
            priority=priority,
            timestamp=utcnow(),
            action_type=action_type,
            metadata=metadata,
        )
        await self.store.insert(NOTIFICATIONS, notification.id, notification.model_dump(mode="json"))

        preferences = (await self.users.preferences(user_id)).notifications
        switch = _CATEGORY_PREFERENCE.get(category)
        if switch is None or getattr(preferences, switch) or priority == NotificationPriority.URGENT:
            await self.dispatcher.dispatch(notification, preferences)
        return notification

    async def list(
        self,
        user_id: str,
        category: Optional[NotificationCategory] = None,
        unread_only: bool = False,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[NotificationListData, Page]:
        records = await self.store.find(NOTIFICATIONS, user_id=user_id)
        notifications = [Notification.model_validate(r.data) for r in records]
        unread_count = sum(1 for n in notifications if not n.is_read)

        filters: FilterSet[Notification] = FilterSet()
        filters.add("category", lambda n: n.category == category, active=category is not None)
        filters.add("unread", lambda n: not n.is_read, active=unread_only)

        matched = sorted(filters.apply(notifications), key=lambda n: n.timestamp, reverse=True)
        page = paginate(matched, offset, limit)
        return NotificationListData(notifications=page.items, unread_count=unread_count), page

    async def set_read(self, user_id: str, notification_id: str, is_read: bool) -> Notification:
        await load_owned(self.store, NOTIFICATIONS, notification_id, user_id, "Notification")

        def apply(doc):
            if doc.get("is_read") == is_read:
                return None
            doc["is_read"] = is_read
            return doc

        record = await mutate(self.store, NOTIFICATIONS, notification_id, apply, "Notification")
        return Notification.model_validate(record.data)

    async def mark_all_read(self, user_id: str) -> ReadAllData:
        updated = 0
        for record in await self.store.find(NOTIFICATIONS, user_id=user_id, is_read=False):
            if not record.data.get("is_read"):
                await self.set_read(user_id, record.id, True)
                updated += 1
        return ReadAllData(updated=updated)

    async def unread_count(self, user_id: str, category: Optional[NotificationCategory] = None) -> int:
        records = await self.store.find(NOTIFICATIONS, user_id=user_id, is_read=False)
        if category is None:
            return len(records)
        return sum(1 for r in records if NotificationCategory(r.data["category"]) == category)
