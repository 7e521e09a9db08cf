from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import logging

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.rest import Client as TwilioClient

from app.modules.notifications.models import (
    Notification, NotificationType, NotificationChannel, NotificationStatus
)
from app.core.config import settings
from app.core.security import mask_phone

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Service for managing notifications across all channels.
    Integrates with Twilio (SMS) and SendGrid (Email).
    """

    @staticmethod
    async def send_notification(
        db: AsyncSession,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        channels: List[NotificationChannel] = None,
        related_entity_type: str = None,
        related_entity_id: int = None,
        extra_data: Dict[str, Any] = None
    ) -> List[Notification]:
        """Send notification to user via specified channels"""
        if channels is None:
            channels = [NotificationChannel.IN_APP]

        notifications = []
        for channel in channels:
            notification = Notification(
                user_id=user_id,
                type=notification_type,
                channel=channel,
                title=title,
                message=message,
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
                extra_data=extra_data,
                status=NotificationStatus.PENDING
            )
            db.add(notification)
            await db.flush()

            try:
                if channel == NotificationChannel.SMS:
                    NotificationService._send_sms(notification)
                elif channel == NotificationChannel.EMAIL:
                    NotificationService._send_email(notification)
                elif channel == NotificationChannel.IN_APP:
                    # In-app notifications are just stored in DB
                    notification.status = NotificationStatus.DELIVERED
                    notification.delivered_at = datetime.now(timezone.utc)

                notification.sent_at = datetime.now(timezone.utc)
                if notification.status == NotificationStatus.PENDING:
                    notification.status = NotificationStatus.SENT

            except Exception as e:
                logger.error(f"Failed to send {channel.value} notification: {str(e)}")
                notification.status = NotificationStatus.FAILED
                notification.error_message = str(e)

            notifications.append(notification)

        await db.commit()
        return notifications

    @staticmethod
    def _send_sms(notification: Notification) -> None:
        """Send SMS via Twilio"""
        if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
            logger.warning("Twilio not configured, skipping SMS")
            notification.status = NotificationStatus.FAILED
            notification.error_message = "SMS provider not configured"
            return

        phone = (notification.extra_data or {}).get("phone", "")
        client = TwilioClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        message = client.messages.create(
            body=f"{notification.title}\n{notification.message}",
            from_=settings.TWILIO_PHONE_NUMBER,
            to=phone
        )
        notification.external_id = message.sid
        notification.status = NotificationStatus.SENT
        logger.info(f"SMS sent to {mask_phone(phone)}: {message.sid}")

    @staticmethod
    def _send_email(notification: Notification) -> None:
        """Send Email via SendGrid"""
        if not settings.SENDGRID_API_KEY:
            logger.warning("SendGrid not configured, skipping email")
            notification.status = NotificationStatus.FAILED
            notification.error_message = "Email provider not configured"
            return

        email_to = (notification.extra_data or {}).get("email", "")
        message = Mail(
            from_email=(settings.SENDGRID_FROM_EMAIL, settings.SENDGRID_FROM_NAME),
            to_emails=email_to,
            subject=notification.title,
            html_content=f"<p>{notification.message}</p>"
        )
        response = SendGridAPIClient(settings.SENDGRID_API_KEY).send(message)

        notification.external_id = response.headers.get("X-Message-Id", "")
        notification.status = NotificationStatus.SENT
        logger.info(f"Email sent successfully to {email_to}")

    # ============ Read Operations ============

    @staticmethod
    async def get_user_notifications(
        db: AsyncSession,
        user_id: int,
        skip: int = 0,
        limit: int = 20,
        notification_type: Optional[NotificationType] = None,
        unread_only: bool = False
    ) -> tuple[List[Notification], int, int]:
        """Get user notifications with filtering and pagination"""
        query = select(Notification).where(
            and_(Notification.user_id == user_id, Notification.channel == NotificationChannel.IN_APP)
        )

        if notification_type:
            query = query.where(Notification.type == notification_type)
        if unread_only:
            query = query.where(Notification.read_at.is_(None))

        total = await db.scalar(select(func.count()).select_from(query.subquery()))

        unread_query = select(func.count()).where(
            and_(
                Notification.user_id == user_id,
                Notification.channel == NotificationChannel.IN_APP,
                Notification.read_at.is_(None)
            )
        )
        unread_count = await db.scalar(unread_query)

        query = query.order_by(Notification.id.desc()).offset(skip).limit(limit)
        result = await db.execute(query)

        return list(result.scalars().all()), total or 0, unread_count or 0

    @staticmethod
    async def mark_as_read(db: AsyncSession, notification_id: int, user_id: int) -> Optional[Notification]:
        """Mark notification as read"""
        result = await db.execute(
            select(Notification).where(
                and_(Notification.id == notification_id, Notification.user_id == user_id)
            )
        )
        notification = result.scalar_one_or_none()
        if notification and not notification.read_at:
            notification.read_at = datetime.now(timezone.utc)
            notification.status = NotificationStatus.READ
            await db.commit()
            await db.refresh(notification)
        return notification


# ============ Escrow Event Helpers ============

# event -> (recipients, title, message template, notification type)
_TRANSACTION_EVENTS = {
    "funded": (("seller",), "Escrow Funded",
               "The buyer has funded escrow of GH₵{amount} for \"{title}\". Verification has started.",
               NotificationType.PAYMENT),
    "disputed": (("seller",), "Dispute Raised",
                 "The buyer raised a dispute on \"{title}\". Funds stay in escrow until it is resolved.",
                 NotificationType.DISPUTE),
    "ready_to_release": (("buyer", "seller"), "Ready for Release",
                         "All milestones for \"{title}\" are complete. Escrow of GH₵{amount} is ready for release.",
                         NotificationType.TRANSACTION),
    "released": (("seller",), "Funds Released",
                 "Escrow for \"{title}\" has been released. GH₵{net} is on its way to you.",
                 NotificationType.PAYMENT),
    "refunded": (("buyer",), "Escrow Refunded",
                 "Escrow of GH₵{amount} for \"{title}\" has been refunded to you.",
                 NotificationType.PAYMENT),
    "closed": (("buyer", "seller"), "Transaction Closed",
               "The transaction for \"{title}\" has been closed by the platform.",
               NotificationType.TRANSACTION),
    "reinstated": (("buyer", "seller"), "Verification Resumed",
                   "The dispute on \"{title}\" was dismissed and verification has resumed.",
                   NotificationType.DISPUTE),
}


_SMS_EVENTS = {"funded", "disputed", "released", "refunded"}
# Money movements and closure also go out by email as a written record
_EMAIL_EVENTS = {"funded", "released", "refunded", "closed"}


class EscrowNotifications:
    """
    Fire-and-forget alerts for escrow state changes.
    Called after the lifecycle change is committed; delivery problems are
    logged and never propagate to the caller.
    """

    @staticmethod
    async def transaction_event(db: AsyncSession, transaction, event: str) -> List[Notification]:
        entry = _TRANSACTION_EVENTS.get(event)
        if entry is None:
            return []

        recipients, title, template, notification_type = entry
        listing_title = transaction.listing.title if transaction.listing else f"transaction #{transaction.id}"
        message = template.format(
            title=listing_title,
            amount=f"{transaction.agreed_price_ghs:,.2f}",
            net=f"{transaction.seller_net_ghs:,.2f}",
        )

        sent = []
        try:
            for party in recipients:
                user = transaction.buyer if party == "buyer" else transaction.seller
                channels = [NotificationChannel.IN_APP]
                if user.phone and event in _SMS_EVENTS:
                    channels.append(NotificationChannel.SMS)
                if user.email and event in _EMAIL_EVENTS:
                    channels.append(NotificationChannel.EMAIL)
                sent.extend(await NotificationService.send_notification(
                    db=db,
                    user_id=user.id,
                    notification_type=notification_type,
                    title=title,
                    message=message,
                    channels=channels,
                    related_entity_type="transaction",
                    related_entity_id=transaction.id,
                    extra_data={"event": event, "phone": user.phone, "email": user.email}
                ))
        except Exception:
            logger.exception(f"Failed to emit '{event}' notification for transaction {transaction.id}")
            await db.rollback()
        return sent

    @staticmethod
    async def dispute_message(db: AsyncSession, transaction, message) -> List[Notification]:
        """In-app alert to every party on the thread except the sender"""
        listing_title = transaction.listing.title if transaction.listing else f"transaction #{transaction.id}"
        sender = "Platform staff" if message.sender_type.value == "ADMIN" else message.sender_type.value.title()

        sent = []
        try:
            for user in (transaction.buyer, transaction.seller):
                if user.id == message.sender_id:
                    continue
                sent.extend(await NotificationService.send_notification(
                    db=db,
                    user_id=user.id,
                    notification_type=NotificationType.DISPUTE,
                    title="New Dispute Message",
                    message=f"{sender} posted a message on the dispute for \"{listing_title}\".",
                    related_entity_type="dispute",
                    related_entity_id=message.dispute_id,
                    extra_data={"event": "dispute_message", "message_id": message.id}
                ))
        except Exception:
            logger.exception(f"Failed to emit message notification for dispute {message.dispute_id}")
            await db.rollback()
        return sent
