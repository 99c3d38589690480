"""Notification Fan-out -- 每次流转为 client 与 partner 各写一条通知

接收方从 booking 读取；booking 不可读时抛出异常，不会静默跳过。
通知以 (source_event_id, recipient_type) 去重，可安全重投。
"""

from datetime import UTC, datetime

from logitrack.core.exceptions import BookingNotFoundError
from logitrack.core.models import (
    Notification,
    NotificationData,
    OutboxEntry,
    RecipientType,
)
from logitrack.core.store.protocols import BookingStore, NotificationStore
from ulid import ULID

CLIENT_TITLE = "Task Status Update"
PARTNER_TITLE = "Provider Task Update"


def build_notifications(
    entry: OutboxEntry,
    client_id: str,
    partner_id: str,
    now: datetime,
) -> list[Notification]:
    """构建 client 与 partner 两条通知"""
    payload = entry.payload
    status = payload.to_status.value
    data = NotificationData(
        booking_id=payload.booking_id,
        task_id=payload.task_id,
        status=status,
        provider_name=payload.provider_name,
    )
    return [
        Notification(
            notification_id=str(ULID()),
            recipient_id=client_id,
            recipient_type=RecipientType.CLIENT,
            title=CLIENT_TITLE,
            message=(
                f"Your {payload.service_type.value} task status "
                f"has been updated to {status}"
            ),
            data=data,
            created_at=now,
            source_event_id=entry.entry_id,
        ),
        Notification(
            notification_id=str(ULID()),
            recipient_id=partner_id,
            recipient_type=RecipientType.PARTNER,
            title=PARTNER_TITLE,
            message=f"Provider {payload.provider_name} updated task status to {status}",
            data=data,
            created_at=now,
            source_event_id=entry.entry_id,
        ),
    ]


async def notify(
    booking_store: BookingStore,
    notification_store: NotificationStore,
    entry: OutboxEntry,
) -> list[str]:
    """为一次流转写入两条通知

    注意：此函数不提交事务，需由调用方管理事务。

    Returns:
        [client_notification_id, partner_notification_id]

    Raises:
        BookingNotFoundError: booking 不存在，无法确定接收方
    """
    booking = await booking_store.get_booking(entry.booking_id)
    if booking is None:
        raise BookingNotFoundError(entry.booking_id)

    notifications = build_notifications(
        entry,
        client_id=booking.client_id,
        partner_id=booking.partner_id,
        now=datetime.now(UTC),
    )
    return [
        await notification_store.add_notification(notification)
        for notification in notifications
    ]
