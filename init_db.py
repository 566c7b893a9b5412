#!/usr/bin/env python3
# init_db.py
"""
Database initialization script.

Creates every table from the ORM models without running migrations.
Useful for a fresh development database:
    python init_db.py

Production databases are managed with `alembic upgrade head`.
"""

from portfolio_tracker.database import engine
from portfolio_tracker.models import Base


def init_db() -> None:
    """Create all database tables defined in models."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("Tables created successfully!")


if __name__ == "__main__":
    init_db()
