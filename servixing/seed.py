import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError

from servixing.db.session import SessionLocal
from servixing.core.config import settings
from servixing.core.security import hash_password
from servixing.models.enums import Role
from servixing.models.user import User

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: Role, name: str) -> bool:
    """Create the account unless the email is taken. Returns True when created."""
    email = email.strip().lower()
    if db.scalar(select(User.id).where(User.email == email)):
        return False
    db.add(User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role.value,
        password_hash=hash_password(password),
        is_active=True,
    ))
    db.commit()
    return True


def run(db: Session | None = None) -> None:
    db = db or SessionLocal()
    try:
        try:
            db.scalar(select(User.id).limit(1))
        except (ProgrammingError, OperationalError):
            # Fresh database without migrations; the API must still boot.
            db.rollback()
            logger.warning("users table missing, skipping seed (run alembic upgrade head)")
            return

        if ensure_user(db, settings.SEED_ADMIN_EMAIL, settings.SEED_ADMIN_PASSWORD, Role.SUPER_ADMIN, "Servixing Admin"):
            logger.info("Seeded super admin %s", settings.SEED_ADMIN_EMAIL)
    finally:
        db.close()


if __name__ == "__main__":
    run()
