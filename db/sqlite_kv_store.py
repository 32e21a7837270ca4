import fnmatch
import sqlite3
import time
from contextlib import closing
from threading import Lock

from db.kv_store import KeyValueStore, parse_score_bound, slice_by_rank


class SQLiteKeyValueStore(KeyValueStore):
    """
    Durable key-value store on a local SQLite file.

    Sorted-set members live one row each, so a reader never observes a
    partially written entry. Expired keys are purged lazily before every
    operation.
    """

    def __init__(self, db_path="./pnode_analytics.db", clock=time.time):
        self.db_path = db_path
        self.clock = clock
        self.lock = Lock()
        self._create_tables()

    def _connect(self):
        return closing(sqlite3.connect(self.db_path))

    def _create_tables(self):
        with self.lock, self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_strings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_sorted (
                    key TEXT,
                    member TEXT,
                    score REAL,
                    PRIMARY KEY (key, member)
                )
            """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_kv_sorted_score
                ON kv_sorted (key, score)
            """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_expiry (
                    key TEXT PRIMARY KEY,
                    expires_at REAL
                )
            """
            )
            conn.commit()

    def _run(self, operation, *args):
        """Run one operation in its own transaction."""
        with self.lock, self._connect() as conn:
            self._purge_expired(conn)
            result = operation(conn, *args)
            conn.commit()
            return result

    def _purge_expired(self, conn):
        cursor = conn.cursor()
        now = self.clock()
        cursor.execute(
            "DELETE FROM kv_strings WHERE key IN "
            "(SELECT key FROM kv_expiry WHERE expires_at <= ?)",
            (now,),
        )
        cursor.execute(
            "DELETE FROM kv_sorted WHERE key IN "
            "(SELECT key FROM kv_expiry WHERE expires_at <= ?)",
            (now,),
        )
        cursor.execute("DELETE FROM kv_expiry WHERE expires_at <= ?", (now,))

    def _exists(self, conn, name):
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM kv_strings WHERE key = ?", (name,))
        if cursor.fetchone():
            return True
        cursor.execute("SELECT 1 FROM kv_sorted WHERE key = ? LIMIT 1", (name,))
        return cursor.fetchone() is not None

    @staticmethod
    def _score_clause(bound, upper):
        score, exclusive = parse_score_bound(bound)
        if score in (float("inf"), float("-inf")):
            # Unbounded on this side unless the bound excludes everything
            if (score == float("-inf")) == upper:
                return "0", ()
            return None, ()
        if upper:
            return ("score < ?" if exclusive else "score <= ?"), (score,)
        return ("score > ?" if exclusive else "score >= ?"), (score,)

    def _range_where(self, min, max):
        clauses, params = ["key = ?"], []
        for bound, upper in ((min, False), (max, True)):
            clause, values = self._score_clause(bound, upper)
            if clause is not None:
                clauses.append(clause)
                params.extend(values)
        return " AND ".join(clauses), params

    # Operations on an open connection, shared by single calls and batches

    def _get(self, conn, name):
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM kv_strings WHERE key = ?", (name,))
        row = cursor.fetchone()
        return row[0] if row else None

    def _set(self, conn, name, value, ex=None):
        cursor = conn.cursor()
        cursor.execute("DELETE FROM kv_sorted WHERE key = ?", (name,))
        cursor.execute(
            "INSERT OR REPLACE INTO kv_strings (key, value) VALUES (?, ?)",
            (name, value),
        )
        if ex:
            cursor.execute(
                "INSERT OR REPLACE INTO kv_expiry (key, expires_at) VALUES (?, ?)",
                (name, self.clock() + ex),
            )
        else:
            cursor.execute("DELETE FROM kv_expiry WHERE key = ?", (name,))
        return True

    def _delete(self, conn, *names):
        cursor = conn.cursor()
        removed = 0
        for name in names:
            if self._exists(conn, name):
                removed += 1
            cursor.execute("DELETE FROM kv_strings WHERE key = ?", (name,))
            cursor.execute("DELETE FROM kv_sorted WHERE key = ?", (name,))
            cursor.execute("DELETE FROM kv_expiry WHERE key = ?", (name,))
        return removed

    def _expire(self, conn, name, time):
        if not self._exists(conn, name):
            return False
        conn.cursor().execute(
            "INSERT OR REPLACE INTO kv_expiry (key, expires_at) VALUES (?, ?)",
            (name, self.clock() + time),
        )
        return True

    def _zadd(self, conn, name, mapping):
        cursor = conn.cursor()
        cursor.execute("DELETE FROM kv_strings WHERE key = ?", (name,))
        added = 0
        for member, score in mapping.items():
            cursor.execute(
                "SELECT 1 FROM kv_sorted WHERE key = ? AND member = ?",
                (name, member),
            )
            if cursor.fetchone() is None:
                added += 1
            cursor.execute(
                "INSERT OR REPLACE INTO kv_sorted (key, member, score) VALUES (?, ?, ?)",
                (name, member, float(score)),
            )
        return added

    def _zremrangebyscore(self, conn, name, min, max):
        where, params = self._range_where(min, max)
        cursor = conn.cursor()
        cursor.execute(f"DELETE FROM kv_sorted WHERE {where}", (name, *params))
        removed = cursor.rowcount
        if not self._exists(conn, name):
            cursor.execute("DELETE FROM kv_expiry WHERE key = ?", (name,))
        return removed

    def _zrange(self, conn, name, start, end, withscores=False):
        cursor = conn.cursor()
        cursor.execute(
            "SELECT member, score FROM kv_sorted WHERE key = ? ORDER BY score, member",
            (name,),
        )
        items = slice_by_rank(cursor.fetchall(), start, end)
        return [tuple(row) for row in items] if withscores else [row[0] for row in items]

    def _zrangebyscore(self, conn, name, min, max, withscores=False):
        where, params = self._range_where(min, max)
        cursor = conn.cursor()
        cursor.execute(
            f"SELECT member, score FROM kv_sorted WHERE {where} ORDER BY score, member",
            (name, *params),
        )
        rows = cursor.fetchall()
        return [tuple(row) for row in rows] if withscores else [row[0] for row in rows]

    def _keys(self, conn, pattern="*"):
        cursor = conn.cursor()
        cursor.execute(
            "SELECT key FROM kv_strings UNION SELECT DISTINCT key FROM kv_sorted"
        )
        return [row[0] for row in cursor.fetchall() if fnmatch.fnmatchcase(row[0], pattern)]

    def _ttl(self, conn, name):
        if not self._exists(conn, name):
            return -2
        cursor = conn.cursor()
        cursor.execute("SELECT expires_at FROM kv_expiry WHERE key = ?", (name,))
        row = cursor.fetchone()
        if row is None:
            return -1
        return int(row[0] - self.clock())

    def _zcard(self, conn, name):
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM kv_sorted WHERE key = ?", (name,))
        return cursor.fetchone()[0]

    # Public API

    def get(self, name):
        return self._run(self._get, name)

    def set(self, name, value, ex=None):
        return self._run(self._set, name, value, ex)

    def delete(self, *names):
        return self._run(self._delete, *names)

    def keys(self, pattern="*"):
        return self._run(self._keys, pattern)

    def expire(self, name, time):
        return self._run(self._expire, name, time)

    def ttl(self, name):
        return self._run(self._ttl, name)

    def zadd(self, name, mapping):
        return self._run(self._zadd, name, mapping)

    def zrange(self, name, start, end, withscores=False):
        return self._run(self._zrange, name, start, end, withscores)

    def zrangebyscore(self, name, min, max, withscores=False):
        return self._run(self._zrangebyscore, name, min, max, withscores)

    def zremrangebyscore(self, name, min, max):
        return self._run(self._zremrangebyscore, name, min, max)

    def zcard(self, name):
        return self._run(self._zcard, name)

    def _execute_batch(self, commands):
        """Apply a queued pipeline inside a single transaction."""
        with self.lock, self._connect() as conn:
            try:
                self._purge_expired(conn)
                results = [
                    getattr(self, f"_{name}")(conn, *args, **kwargs)
                    for name, args, kwargs in commands
                ]
                conn.commit()
                return results
            except sqlite3.Error:
                conn.rollback()
                raise
