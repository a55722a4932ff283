import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


RENTAL_DB_URL = _require_env("RENTAL_DB_URL")


def _engine_options(db_url: str) -> dict:
    options = {"pool_pre_ping": True, "future": True}
    if db_url.startswith("sqlite") and (":memory:" in db_url or db_url in {"sqlite://", "sqlite+pysqlite://"}):
        # One shared connection, otherwise every checkout sees an empty database.
        options["connect_args"] = {"check_same_thread": False}
        options["poolclass"] = StaticPool
    return options


engine_rental = create_engine(RENTAL_DB_URL, **_engine_options(RENTAL_DB_URL))

SessionLocalRental = sessionmaker(
    bind=engine_rental,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
