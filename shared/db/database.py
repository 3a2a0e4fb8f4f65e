"""
Engine and session handling for the job queue and link tables.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel

# registers the tables on SQLModel.metadata
from shared.db import tables  # noqa: F401
from shared.helper.HelperConfig import HelperConfig


class Database:
    """Owns the SQLAlchemy engine. One instance per process, passed to the stores."""

    def __init__(self, helper_config: HelperConfig, db_url: str | None = None):
        self.logging = helper_config.get_logger()
        self.db_url = db_url or helper_config.get_string_val("DATABASE_URL", default="sqlite:///./pipeline.db")

        connect_args = {}
        if self.db_url.startswith("sqlite://"):
            # sessions are opened from worker threads (asyncio.to_thread)
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = helper_config.get_float_val("DATABASE_SQLITE_BUSY_TIMEOUT", default=30.0)

        self.engine: Engine = create_engine(self.db_url, connect_args=connect_args)

    def create_all(self) -> None:
        """Create missing tables and indexes."""
        SQLModel.metadata.create_all(self.engine)
        self.logging.info("Database schema ready (%s).", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def dispose(self) -> None:
        self.engine.dispose()
