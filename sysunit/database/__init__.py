import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


__all__ = ["Base", "ManagedUnit", "Session", "engine", "init_db", "url"]

from .schema import Base, ManagedUnit


url = os.getenv("SYSUNIT_DB_URL", "sqlite:////var/lib/sysunit/state.db")
engine = create_engine(url)
Session = sessionmaker(bind=engine)


def init_db(bind=None):
    """
    Create any missing tables, on the default engine unless another is given.
    """
    Base.metadata.create_all(bind or engine)
