from __future__ import annotations

from ..extensions import db
from franchise_ops.time_utils import to_utc_z


class Notification(db.Model):
    """
    Stored notification addressed to a user or to every holder of a role.

    target_type: USER (target_id = user id), ROLE (target_role), LOCATION (target_id = location id)
    category: orders | approvals | inventory | shipping
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchise_id = db.Column(db.Integer, db.ForeignKey("franchises.id"), nullable=True, index=True)

    target_type = db.Column(db.String(16), nullable=False)
    target_id = db.Column(db.Integer, nullable=True)
    target_role = db.Column(db.String(32), nullable=True)

    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    level = db.Column(db.String(16), nullable=False, default="info")
    category = db.Column(db.String(32), nullable=True)
    data = db.Column(db.JSON, nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchise_id": self.franchise_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "target_role": self.target_role,
            "title": self.title,
            "message": self.message,
            "level": self.level,
            "category": self.category,
            "data": self.data,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
