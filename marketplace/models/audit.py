from marketplace import db
from marketplace.utils.clock import utcnow
import uuid


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_id = db.Column(db.String(36), nullable=False)  # user id or 'SYSTEM'
    action = db.Column(db.String(64), nullable=False)
    resource = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.String(36))
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
