import os
import time
from urllib.parse import urlparse

import psycopg2


def wait_for_postgres(database_url: str, timeout_s: int = 60) -> None:
    """Block until Postgres accepts connections. SQLite URLs return immediately."""
    if database_url.startswith("sqlite"):
        return
    # SQLAlchemy URL may start with postgresql+psycopg2://
    url = database_url.replace("postgresql+psycopg2://", "postgresql://")
    p = urlparse(url)
    params = dict(
        host=p.hostname or "db",
        port=p.port or 5432,
        user=p.username or "vilo",
        password=p.password or "vilo",
        dbname=(p.path or "/vilo").lstrip("/") or "vilo",
    )

    start = time.time()
    print(f"[wait_for_db] Waiting for Postgres at {params['host']}:{params['port']} db={params['dbname']} (timeout={timeout_s}s)")
    while True:
        try:
            psycopg2.connect(**params).close()
            print("[wait_for_db] Postgres is ready.")
            return
        except psycopg2.OperationalError as e:
            if time.time() - start > timeout_s:
                print(f"[wait_for_db] Timed out waiting for DB. Last error: {e}")
                raise
            time.sleep(1)


if __name__ == "__main__":
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise SystemExit("DATABASE_URL is not set")
    wait_for_postgres(db_url, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
