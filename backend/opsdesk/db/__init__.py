import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from opsdesk.config import settings

DATABASE_URL = settings.DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # sessions are opened from the threadpool used by the async backends
    connect_args["check_same_thread"] = False

engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(reset: bool = False, bind=None):
    """
    Initialize DB schema.

    Behavior:
      - If reset=True or the RESET_DB env var is set to 1/true/yes, drop & recreate tables.
      - Otherwise, leave existing tables in place.

    Model modules are imported here so metadata is populated before create_all.
    """
    import opsdesk.models.sheet_row  # noqa: F401

    bind = bind or engine
    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")
    if reset or env_reset:
        Base.metadata.drop_all(bind=bind)
    Base.metadata.create_all(bind=bind)
