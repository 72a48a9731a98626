#!/usr/bin/env python3
"""
Container entrypoint: wait for Postgres, migrate, seed, then exec uvicorn.
"""
import os
import sys

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vilo.core.config import settings
from wait_for_db import wait_for_postgres

wait_for_postgres(settings.DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))

alembic_cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
command.upgrade(alembic_cfg, "head")

# Seed on a fresh engine so nothing is cached from before the migration ran
seed_engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
seed_db = sessionmaker(autocommit=False, autoflush=False, bind=seed_engine)()
try:
    from vilo.seed import run as run_seed
    run_seed(seed_db)
finally:
    seed_db.close()
    seed_engine.dispose()

os.execv(
    sys.executable,
    [sys.executable, "-m", "uvicorn", "vilo.main:app", "--host", "0.0.0.0", "--port", os.getenv("PORT", "8000")],
)
