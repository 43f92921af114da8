from app.models.provider import Provider
from app.models.treatment import Treatment
from app.models.user import User
from app.seed import run


def test_seed_is_repeatable(session_factory):
    run(session_factory())
    run(session_factory())

    with session_factory() as db:
        assert db.query(Treatment).count() == 3
        assert {p.email for p in db.query(Provider)} == {"alice@oom.local", "bruno@oom.local"}
        roles = sorted(u.role for u in db.query(User))
        assert roles == ["admin", "concierge", "provider", "provider"]
        assert all(u.provider_id for u in db.query(User).filter(User.role == "provider"))
