import json

import psycopg2
import pytest
from unittest.mock import MagicMock, patch

from db.postgresql_snapshot_database import PostgreSQLSnapshotArchive, init_snapshot_archive
from interfaces.types import MetricSnapshot


@pytest.fixture
def connection():
    conn = MagicMock()
    cursor = conn.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = [{"timestamp_ms": 5, "data": {"timestamp": 5, "uptime": 1}}]
    return conn


@pytest.fixture
def archive(connection):
    with patch("db.postgresql_snapshot_database.psycopg2.connect", return_value=connection):
        yield PostgreSQLSnapshotArchive(host="db.test", password="secret")


class TestPostgreSQLSnapshotArchive:
    def test_requires_host(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_HOST", raising=False)
        with pytest.raises(ValueError):
            PostgreSQLSnapshotArchive()

    def test_creates_schema_on_init(self, archive, connection):
        cursor = connection.cursor.return_value.__enter__.return_value
        statements = " ".join(call.args[0] for call in cursor.execute.call_args_list)

        assert "CREATE TABLE IF NOT EXISTS snapshots" in statements
        assert "idx_snapshots_entity_ts" in statements
        connection.commit.assert_called()

    def test_add_snapshots(self, archive, connection):
        entries = [("node-1", MetricSnapshot(timestamp_ms=5, uptime=1, score=2))]

        with patch("db.postgresql_snapshot_database.psycopg2.extras.execute_values") as execute_values:
            assert archive.add_snapshots("node:metrics:", entries) == 1

        rows = execute_values.call_args.args[2]
        assert rows == [
            ("node:metrics:", "node-1", 5, json.dumps({"timestamp": 5, "uptime": 1, "score": 2}))
        ]

    def test_add_nothing(self, archive):
        assert archive.add_snapshots("node:metrics:", []) == 0

    def test_failed_insert_rolls_back(self, archive, connection):
        entries = [("node-1", MetricSnapshot(timestamp_ms=5))]

        with patch(
            "db.postgresql_snapshot_database.psycopg2.extras.execute_values",
            side_effect=psycopg2.DatabaseError("boom"),
        ):
            with pytest.raises(psycopg2.DatabaseError):
                archive.add_snapshots("node:metrics:", entries)

        connection.rollback.assert_called_once()

    def test_get_snapshots(self, archive, connection):
        cursor = connection.cursor.return_value.__enter__.return_value

        assert archive.get_snapshots("node:metrics:", "node-1", start_ms=1, end_ms=9) == [
            {"timestamp": 5, "uptime": 1}
        ]
        query, params = cursor.execute.call_args.args
        assert "timestamp_ms <= %s" in query
        assert params == ["node:metrics:", "node-1", 1, 9, 10000]

    def test_unreachable_server_raises_connection_error(self):
        with patch(
            "db.postgresql_snapshot_database.psycopg2.connect",
            side_effect=psycopg2.OperationalError("could not connect"),
        ):
            with pytest.raises(ConnectionError):
                PostgreSQLSnapshotArchive(host="db.test")


class TestInitSnapshotArchive:
    def test_disabled_without_host(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_HOST", raising=False)
        assert init_snapshot_archive() is None

    def test_disabled_with_missing_credentials(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "db.test")
        monkeypatch.delenv("POSTGRES_PASSWORD", raising=False)
        assert init_snapshot_archive() is None

    def test_connection_failure_disables_archive(self, monkeypatch):
        for name, value in (
            ("POSTGRES_HOST", "db.test"),
            ("POSTGRES_DB", "pnode_analytics"),
            ("POSTGRES_USER", "pnode_user"),
            ("POSTGRES_PASSWORD", "secret"),
        ):
            monkeypatch.setenv(name, value)

        with patch(
            "db.postgresql_snapshot_database.psycopg2.connect",
            side_effect=psycopg2.OperationalError("could not connect"),
        ):
            assert init_snapshot_archive() is None
