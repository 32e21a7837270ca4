import json
import os
from threading import Lock

import psycopg2
import psycopg2.extras
from fiber.logging_utils import get_logger

logger = get_logger(__name__)


class PostgreSQLSnapshotArchive:
    """
    Long-term archive of time-series snapshots.

    The key-value store only keeps the retention window; this table keeps
    every snapshot ever appended so history can be rebuilt or exported.
    """

    def __init__(self, host=None, port=None, database=None, user=None, password=None):
        """
        Initialize PostgreSQL snapshot archive connection.

        Args:
            host: PostgreSQL host (default from env POSTGRES_HOST)
            port: PostgreSQL port (default from env POSTGRES_PORT)
            database: Database name (default from env POSTGRES_DB)
            user: Database user (default from env POSTGRES_USER)
            password: Database password (default from env
                POSTGRES_PASSWORD)
        """
        self.host = host or os.getenv("POSTGRES_HOST")
        self.port = port or os.getenv("POSTGRES_PORT", "5432")
        self.database = database or os.getenv("POSTGRES_DB", "pnode_analytics")
        self.user = user or os.getenv("POSTGRES_USER", "pnode_user")
        self.password = password or os.getenv("POSTGRES_PASSWORD", "")

        if not self.host:
            raise ValueError(
                "PostgreSQL host must be provided via POSTGRES_HOST environment variable or host parameter"
            )

        self.lock = Lock()

        self._test_connection()
        logger.info(
            f"PostgreSQL snapshot archive initialized: "
            f"{self.host}:{self.port}/{self.database}"
        )

    def _get_connection(self):
        """Get a database connection."""
        try:
            return psycopg2.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
        except psycopg2.OperationalError as e:
            error_msg = str(e)
            if "password authentication failed" in error_msg:
                logger.error(f"PostgreSQL authentication failed for user '{self.user}'")
                logger.error(
                    "Please check your POSTGRES_USER and POSTGRES_PASSWORD environment variables"
                )
                raise ConnectionError(f"Authentication failed for user '{self.user}'")
            elif "does not exist" in error_msg:
                logger.error(f"Database '{self.database}' does not exist")
                logger.error("Please create the database manually using:")
                logger.error(
                    f'  psql -h {self.host} -U postgres -c "CREATE DATABASE {self.database};"'
                )
                raise ConnectionError(f"Database '{self.database}' does not exist")
            else:
                logger.error(
                    f"Cannot connect to PostgreSQL server at {self.host}:{self.port}: {error_msg}"
                )
                raise ConnectionError(
                    f"Cannot connect to PostgreSQL server at {self.host}:{self.port}"
                )

    def _test_connection(self):
        """Test the connection and make sure the snapshots table exists."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                self._create_table_and_indexes(cursor)
            conn.commit()
            logger.info("PostgreSQL connection test successful")
        finally:
            conn.close()

    def _create_table_and_indexes(self, cursor):
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                id SERIAL PRIMARY KEY,
                namespace VARCHAR(64) NOT NULL,
                entity_id VARCHAR(255) NOT NULL,
                timestamp_ms BIGINT NOT NULL,
                data JSONB,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_snapshots_entity ON snapshots(namespace, entity_id)",
            "CREATE INDEX IF NOT EXISTS idx_snapshots_entity_ts ON snapshots(namespace, entity_id, timestamp_ms DESC)",
            "CREATE INDEX IF NOT EXISTS idx_snapshots_created_at ON snapshots(created_at)",
        ]
        for index_sql in indexes:
            cursor.execute(index_sql)

    def add_snapshots(self, namespace, entries):
        """Insert (entity_id, snapshot) pairs in one transaction."""
        rows = [
            (namespace, entity_id, snapshot.timestamp_ms, json.dumps(snapshot.to_dict()))
            for entity_id, snapshot in entries
        ]
        if not rows:
            return 0

        with self.lock:
            conn = self._get_connection()
            try:
                with conn.cursor() as cursor:
                    psycopg2.extras.execute_values(
                        cursor,
                        """
                        INSERT INTO snapshots (namespace, entity_id, timestamp_ms, data)
                        VALUES %s
                        """,
                        rows,
                    )
                conn.commit()
                logger.debug(f"Archived {len(rows)} snapshots for {namespace}*")
                return len(rows)
            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Failed to archive snapshots to PostgreSQL: {e}")
                raise
            finally:
                conn.close()

    def get_snapshots(self, namespace, entity_id, start_ms=0, end_ms=None, limit=10000):
        """Archived snapshot dictionaries for one entity, oldest first."""
        query = """
            SELECT timestamp_ms, data FROM snapshots
            WHERE namespace = %s AND entity_id = %s AND timestamp_ms >= %s
        """
        params = [namespace, entity_id, start_ms]
        if end_ms is not None:
            query += " AND timestamp_ms <= %s"
            params.append(end_ms)
        query += " ORDER BY timestamp_ms ASC, id ASC LIMIT %s"
        params.append(limit)

        with self.lock:
            try:
                conn = self._get_connection()
                try:
                    with conn.cursor() as cursor:
                        cursor.execute(query, params)
                        return [row["data"] for row in cursor.fetchall()]
                finally:
                    conn.close()
            except psycopg2.Error as e:
                logger.error(f"Failed to read archived snapshots from PostgreSQL: {e}")
                return []


def init_snapshot_archive():
    """
    Build the archive when POSTGRES_HOST is configured; None otherwise.
    Connection problems disable the archive instead of failing startup.
    """
    if not os.getenv("POSTGRES_HOST"):
        logger.info("POSTGRES_HOST not set, PostgreSQL snapshot archive disabled")
        return None

    missing_vars = [
        var for var in ("POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD") if not os.getenv(var)
    ]
    if missing_vars:
        logger.warning(f"Missing PostgreSQL environment variables: {missing_vars}")
        logger.info("PostgreSQL snapshot archive disabled")
        return None

    try:
        archive = PostgreSQLSnapshotArchive()
        logger.info("PostgreSQL snapshot archive enabled")
        return archive
    except ConnectionError as e:
        logger.error(f"PostgreSQL connection failed: {e}")
        logger.info("PostgreSQL snapshot archive disabled - continuing with key-value store only")
    except Exception as e:
        logger.warning(f"Failed to initialize PostgreSQL snapshot archive: {e}")
        logger.info("Continuing without snapshot archive")
    return None
