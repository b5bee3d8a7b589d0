"""Utility script to reset the local authority database.

Usage:
    python scripts/reset_local_db.py

Environment:
    Ensure DATABASE_URL (and other required settings) are available in
    the current shell before running this script.
"""

from __future__ import annotations

from access_plugins.authority.db import Base, create_authority_engine
from access_plugins.authority import tables  # noqa: F401
from access_plugins.config import get_settings


def reset_database() -> None:
    engine = create_authority_engine(get_settings().database_url)
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    print("Local authority database reset.")


if __name__ == "__main__":
    reset_database()
