# Overview: Notification collaborator; stored notifications plus optional webhook delivery.

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import and_, or_

from ..extensions import db
from ..errors import DownstreamError, NotFoundError
from ..models import FranchiseLocation, Notification, User
from franchise_ops.time_utils import utcnow

logger = logging.getLogger(__name__)


TARGET_USER = "USER"
TARGET_ROLE = "ROLE"
TARGET_LOCATION = "LOCATION"


@dataclass(frozen=True)
class Recipients:
    """
    Recipient selector.

    USER -> one user id; ROLE -> every holder of a role within a franchise;
    LOCATION -> everyone attached to a location.
    """
    target_type: str
    target_id: int | None = None
    target_role: str | None = None
    franchise_id: int | None = None

    @classmethod
    def user(cls, user_id: int) -> "Recipients":
        return cls(TARGET_USER, target_id=user_id)

    @classmethod
    def role(cls, role: str, franchise_id: int | None = None) -> "Recipients":
        return cls(TARGET_ROLE, target_role=role, franchise_id=franchise_id)

    @classmethod
    def location(cls, location_id: int) -> "Recipients":
        return cls(TARGET_LOCATION, target_id=location_id)


class DatabaseNotifier:
    """Stores one Notification row per notify() call and commits it."""

    def _resolve_franchise(self, recipients: Recipients) -> int | None:
        if recipients.franchise_id is not None:
            return recipients.franchise_id
        if recipients.target_type == TARGET_LOCATION and recipients.target_id is not None:
            location = db.session.get(FranchiseLocation, recipients.target_id)
            return location.franchise_id if location else None
        if recipients.target_type == TARGET_USER and recipients.target_id is not None:
            user = db.session.get(User, recipients.target_id)
            return user.franchise_id if user else None
        return None

    def store(
        self,
        recipients: Recipients,
        title: str,
        message: str,
        data: dict | None = None,
        *,
        level: str = "info",
        category: str | None = None,
    ) -> Notification:
        notification = Notification(
            franchise_id=self._resolve_franchise(recipients),
            target_type=recipients.target_type,
            target_id=recipients.target_id,
            target_role=recipients.target_role,
            title=title,
            message=message,
            level=level,
            category=category,
            data=data,
            is_read=False,
            created_at=utcnow(),
        )
        db.session.add(notification)
        db.session.commit()
        return notification

    def notify(self, recipients: Recipients, title: str, message: str, data: dict | None = None, **kwargs) -> Notification:
        notification = self.store(recipients, title, message, data, **kwargs)
        logger.info(
            "Notification %s -> %s %s: %s",
            notification.id,
            recipients.target_type,
            recipients.target_role or recipients.target_id,
            title,
        )
        return notification


class WebhookNotifier(DatabaseNotifier):
    """
    Stores the notification, then POSTs it as JSON to a webhook.

    The stored row survives a failed delivery; the failure surfaces as
    DownstreamError for the caller to log.
    """

    def __init__(self, url: str, *, timeout: float = 5.0, transport: httpx.BaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def notify(self, recipients: Recipients, title: str, message: str, data: dict | None = None, **kwargs) -> Notification:
        notification = super().notify(recipients, title, message, data, **kwargs)
        payload = notification.to_dict()
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownstreamError("notification", f"webhook delivery failed for notification {notification.id}: {exc}") from exc
        return notification


def build_notifier(config) -> DatabaseNotifier:
    url = config.get("NOTIFICATION_WEBHOOK_URL") or ""
    if url:
        return WebhookNotifier(url, timeout=float(config.get("NOTIFICATION_TIMEOUT_SECONDS", 5)))
    return DatabaseNotifier()


def _visible_to(user: User):
    """Notifications addressed to the user directly, to their role, or to their location."""
    scopes = [
        and_(Notification.target_type == TARGET_USER, Notification.target_id == user.id),
        and_(
            Notification.target_type == TARGET_ROLE,
            Notification.target_role == user.role,
            or_(Notification.franchise_id.is_(None), Notification.franchise_id == user.franchise_id),
        ),
    ]
    if user.location_id is not None:
        scopes.append(
            and_(Notification.target_type == TARGET_LOCATION, Notification.target_id == user.location_id)
        )

    return db.session.query(Notification).filter(or_(*scopes))


def list_for_user(user: User, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = _visible_to(user)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.id.desc()).limit(limit).all()


def mark_read(notification_id: int, user: User) -> Notification:
    notification = _visible_to(user).filter(Notification.id == notification_id).first()
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    notification.is_read = True
    db.session.commit()
    return notification
