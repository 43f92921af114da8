"""Block until the configured Postgres accepts connections (imported by start_api.py)."""
import os
import time
from urllib.parse import urlparse

import psycopg2


def wait(database_url: str, timeout_s: int) -> None:
    # SQLAlchemy URL may start with postgresql+psycopg2://
    url = database_url.replace("postgresql+psycopg2://", "postgresql://").replace("postgres://", "postgresql://")
    p = urlparse(url)
    params = dict(
        host=p.hostname or "db",
        port=p.port or 5432,
        user=p.username or "oom",
        password=p.password or "oom",
        dbname=(p.path or "/oom").lstrip("/") or "oom",
    )
    print(f"[wait_for_db] Waiting for Postgres at {params['host']}:{params['port']} db={params['dbname']} (timeout={timeout_s}s)")
    deadline = time.time() + timeout_s
    while True:
        try:
            psycopg2.connect(connect_timeout=5, **params).close()
            print("[wait_for_db] Postgres is ready.")
            return
        except psycopg2.OperationalError as e:
            if time.time() > deadline:
                print(f"[wait_for_db] Timed out waiting for DB. Last error: {e}")
                raise
            time.sleep(1)


DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise SystemExit("DATABASE_URL is not set")

# Local runs on SQLite have nothing to wait for
if not DATABASE_URL.startswith("sqlite"):
    wait(DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
