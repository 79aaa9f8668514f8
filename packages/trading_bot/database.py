"""
SQLAlchemy engine and sessions for the bot's users, orders and trades.
"""
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session

from .models import Base

DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "data", "bot.db")
DEFAULT_DB_URL = f"sqlite:///{DEFAULT_DB_PATH}"


class Database:
    """Engine plus a session factory bound to it."""

    def __init__(self, db_url: Optional[str] = None):
        """
        Args:
            db_url: SQLAlchemy URL. Falls back to $BOT_DB_URL, then data/bot.db
                next to this package.
        """
        self.db_url = db_url or os.environ.get("BOT_DB_URL", DEFAULT_DB_URL)
        url = make_url(self.db_url)

        connect_args = {}
        if url.get_backend_name() == "sqlite":
            connect_args["check_same_thread"] = False
            db_dir = os.path.dirname(url.database or "")
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self.engine = create_engine(self.db_url, echo=False, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def init_db(self) -> None:
        """Create missing tables."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """
        Transactional scope: commits on exit, rolls back on error.

        Usage:
            with db.get_session() as session:
                session.query(Order).filter(Order.completed.is_(False)).all()
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def init_db(db_url: Optional[str] = None) -> Database:
    """Open the database at `db_url` and create its tables."""
    db = Database(db_url)
    db.init_db()
    return db
