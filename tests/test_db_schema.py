"""Tests for the local authority schema."""

from pathlib import Path
import sys

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from access_plugins.authority.db import (  # noqa: E402
    Base,
    create_authority_engine,
    create_session_factory,
    session_scope,
)
from access_plugins.authority.tables import PluginDataRecord  # noqa: E402
from access_plugins.errors import ConnectionProblem  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = create_authority_engine(f"sqlite:///{tmp_path / 'schema.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def test_create_all_creates_expected_tables(engine):
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    assert "access_requests" in tables
    assert "plugin_data" in tables

    request_columns = {column["name"] for column in inspector.get_columns("access_requests")}
    assert request_columns.issuperset({"id", "user", "roles_json", "state", "delegator", "version"})

    plugin_columns = {column["name"] for column in inspector.get_columns("plugin_data")}
    assert plugin_columns.issuperset({"kind", "resource", "plugin", "data_json", "version"})


def test_plugin_data_is_unique_per_resource_and_plugin(engine):
    factory = create_session_factory(engine)
    with session_scope(factory) as session:
        session.add(PluginDataRecord(kind="access_request", resource="req-1", plugin="slack", data_json="{}"))

    with pytest.raises(IntegrityError):
        with session_scope(factory) as session:
            session.add(PluginDataRecord(kind="access_request", resource="req-1", plugin="slack", data_json="{}"))

    with session_scope(factory) as session:
        session.add(PluginDataRecord(kind="access_request", resource="req-1", plugin="mattermost", data_json="{}"))


def test_unreachable_database_is_a_connection_problem(tmp_path):
    engine = create_authority_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}")
    factory = create_session_factory(engine)

    with pytest.raises(ConnectionProblem):
        with session_scope(factory) as session:
            session.execute(PluginDataRecord.__table__.select())
