"""
db.py
=====
Handles database connection and session management for the scheduling engine.
"""

import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # For SQLite, we must disable thread check
    connect_args = {"check_same_thread": False}

    # Create directory if it doesn't exist
    db_file = DATABASE_URL.replace("sqlite:///", "", 1)
    db_dir = os.path.dirname(db_file)
    if db_file and db_file != ":memory:" and db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)

engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)

# Create a configured session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency injection generator.
    Yields a database session, closes when done.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(Base, bind=None):
    """
    Initializes the database, creating tables and partial indexes if missing.
    Called once on FastAPI startup.
    """
    Base.metadata.create_all(bind=bind or engine)
    logger.info("🗄️ Database tables ready")
