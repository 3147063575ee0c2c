from servixing import seed
from servixing.core.config import settings
from servixing.core.security import verify_password
from servixing.models.enums import Role
from servixing.models.user import User

from conftest import TestingSessionLocal


def test_seed_creates_super_admin_once(db, monkeypatch):
    monkeypatch.setattr(settings, "SEED_ADMIN_EMAIL", "Root@Servixing.test")
    monkeypatch.setattr(settings, "SEED_ADMIN_PASSWORD", "seed-pass-1")

    seed.run(TestingSessionLocal())
    seed.run(TestingSessionLocal())

    admins = db.query(User).filter(User.email == "root@servixing.test").all()
    assert len(admins) == 1
    assert admins[0].role == Role.SUPER_ADMIN.value
    assert verify_password("seed-pass-1", admins[0].password_hash)
