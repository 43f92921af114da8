import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, OperationalError

from app.db.session import SessionLocal
from app.models.user import User
from app.models.venue import Venue
from app.models.provider import Provider, ProviderVenue
from app.models.treatment import Treatment


def ensure_user(db: Session, email: str, role: str, name: str, provider_id: str | None = None) -> None:
    if db.query(User).filter(User.email == email).first():
        return
    db.add(User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role,
        provider_id=provider_id,
        is_active=True,
    ))
    db.commit()


def ensure_provider(db: Session, venue: Venue, first: str, last: str, email: str, phone: str) -> Provider:
    p = db.query(Provider).filter(Provider.email == email).first()
    if not p:
        p = Provider(id=str(uuid.uuid4()), first_name=first, last_name=last, email=email, phone=phone, status="active")
        db.add(p)
        db.add(ProviderVenue(id=str(uuid.uuid4()), provider_id=p.id, venue_id=venue.id))
        db.commit()
    ensure_user(db, email, "provider", p.full_name, provider_id=p.id)
    return p


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            print("[seed] users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@oom.local", "admin", "Admin")
        ensure_user(db, "concierge@oom.local", "concierge", "Concierge")

        venue = db.query(Venue).filter(Venue.name == "Demo Hotel").first()
        if not venue:
            venue = Venue(id=str(uuid.uuid4()), name="Demo Hotel", currency="EUR", venue_commission_pct=10, provider_commission_pct=70)
            db.add(venue)
            for name, price, minutes in (("Haircut", 6500, 45), ("Massage 60", 12000, 60), ("Blow-dry", 4500, 30)):
                db.add(Treatment(id=str(uuid.uuid4()), venue_id=venue.id, name=name, price_cents=price, duration_minutes=minutes))
            db.commit()

        ensure_provider(db, venue, "Alice", "Martin", "alice@oom.local", "+33600000001")
        ensure_provider(db, venue, "Bruno", "Petit", "bruno@oom.local", "+33600000002")
        print("[seed] done")
    finally:
        db.close()


if __name__ == "__main__":
    run()
