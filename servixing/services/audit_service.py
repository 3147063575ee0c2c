import json
import uuid

from sqlalchemy.orm import Session

from servixing.models.audit_log import AuditLog


def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str | None,
              details: dict | None = None) -> AuditLog:
    """Stage an audit row in the caller's transaction; the caller commits.

    ``actor_user_id`` is a user id or a system actor such as ``webhook:paystack``.
    """
    entry = AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id or "system",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or "-",
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str, sort_keys=True),
    )
    db.add(entry)
    return entry
