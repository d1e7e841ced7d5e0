"""DoltDB / MySQL access for the quota counter, results and verification cache.

Connections are per thread and autocommit. Every state change the pipeline
makes (quota reservation, cache upsert, result insert) is one statement, so
nothing here opens an explicit transaction.
"""

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterator

import pymysql
from pymysql.cursors import DictCursor

_local = threading.local()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS extraction_quota (
        quota_date DATE NOT NULL PRIMARY KEY,
        used INT NOT NULL DEFAULT 0,
        quota_limit INT NOT NULL,
        last_used_at TIMESTAMP NULL DEFAULT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS extraction_results (
        id VARCHAR(36) NOT NULL PRIMARY KEY,
        school VARCHAR(255) NOT NULL,
        program VARCHAR(255) NOT NULL,
        tuition_amount DECIMAL(12, 2) NULL,
        cost_per_credit DECIMAL(12, 2) NULL,
        total_credits DECIMAL(8, 2) NULL,
        program_length VARCHAR(255) NULL,
        program_length_months INT NULL,
        academic_year VARCHAR(32) NULL,
        confidence_score VARCHAR(16) NOT NULL,
        status VARCHAR(16) NOT NULL,
        failure_reason VARCHAR(32) NULL,
        source_url TEXT NULL,
        validated_sources JSON NULL,
        candidate_json JSON NULL,
        verification_status VARCHAR(32) NULL,
        verification_data JSON NULL,
        retry_count INT NOT NULL DEFAULT 0,
        extraction_version INT NOT NULL DEFAULT 1,
        cost_usd DECIMAL(10, 6) NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        INDEX idx_school_program (school, program)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS verification_cache (
        content_hash CHAR(64) NOT NULL PRIMARY KEY,
        school VARCHAR(255) NOT NULL,
        program VARCHAR(255) NOT NULL,
        result_json JSON NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


@dataclass(frozen=True)
class ConnectionSettings:
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = "tuition"
    timeout: int = 10  # connect, read and write, in seconds

    @classmethod
    def from_env(cls) -> "ConnectionSettings":
        """Read DOLT_HOST, DOLT_PORT, DOLT_USER, DOLT_PASSWORD, DOLT_DATABASE and DOLT_TIMEOUT."""
        return cls(
            host=os.environ.get("DOLT_HOST", cls.host),
            port=int(os.environ.get("DOLT_PORT", cls.port)),
            user=os.environ.get("DOLT_USER", cls.user),
            password=os.environ.get("DOLT_PASSWORD", cls.password),
            database=os.environ.get("DOLT_DATABASE", cls.database),
            timeout=int(os.environ.get("DOLT_TIMEOUT", cls.timeout)),
        )

    def connect_kwargs(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "autocommit": True,
            "charset": "utf8mb4",
            "cursorclass": DictCursor,
            "connect_timeout": self.timeout,
            "read_timeout": self.timeout,
            "write_timeout": self.timeout,
        }


@lru_cache(maxsize=1)
def get_settings() -> ConnectionSettings:
    return ConnectionSettings.from_env()


def close_connection() -> None:
    """Drop this thread's connection, ignoring errors from an already-dead socket."""
    conn = getattr(_local, "conn", None)
    _local.conn = None
    if conn is not None:
        try:
            conn.close()
        except pymysql.Error:
            pass


def get_connection() -> pymysql.Connection:
    """This thread's connection; replaced when a ping shows it has died."""
    conn = getattr(_local, "conn", None)
    if conn is not None:
        try:
            conn.ping(reconnect=False)
            return conn
        except pymysql.Error:
            close_connection()
    _local.conn = pymysql.connect(**get_settings().connect_kwargs())
    return _local.conn


@contextmanager
def get_cursor() -> Iterator[Any]:
    """Dict cursor on this thread's connection.

    A connection-level failure discards the connection so the next call
    reconnects; the error itself propagates.

    Example:
        with get_cursor() as cursor:
            cursor.execute("SELECT used FROM extraction_quota WHERE quota_date = %s", (day,))
            row = cursor.fetchone()
    """
    conn = get_connection()
    try:
        with conn.cursor() as cursor:
            yield cursor
    except pymysql.OperationalError:
        close_connection()
        raise


def execute_query(sql: str, params: tuple | None = None, fetch: str = "all") -> list[dict] | dict | None:
    """Run a statement and fetch "all" rows, "one" row, or "none".

    Example:
        rows = execute_query("SELECT * FROM extraction_results WHERE school = %s", (school,))
        row = execute_query("SELECT used FROM extraction_quota WHERE quota_date = %s", (day,), fetch="one")
    """
    with get_cursor() as cursor:
        cursor.execute(sql, params or ())
        if fetch == "all":
            return cursor.fetchall()
        if fetch == "one":
            return cursor.fetchone()
        return None


def execute_write(sql: str, params: tuple | None = None) -> int:
    """Run an INSERT/UPDATE/DELETE and return the affected row count.

    Conditional updates (the quota reservation) read the count to learn
    whether they applied.
    """
    with get_cursor() as cursor:
        return cursor.execute(sql, params or ())


def execute_increment(sql: str, params: tuple | None = None) -> int | None:
    """Run a conditional UPDATE that stores its new value with LAST_INSERT_ID(expr).

    Returns that value, read on the same connection, or None when no row
    matched. Concurrent increments on other connections do not leak in.
    """
    with get_cursor() as cursor:
        if cursor.execute(sql, params or ()) != 1:
            return None
        cursor.execute("SELECT LAST_INSERT_ID() AS value")
        return int(cursor.fetchone()["value"])


def init_schema() -> None:
    for statement in SCHEMA:
        execute_query(statement, fetch="none")


def check_connection() -> bool:
    """True when the database answers SELECT 1."""
    try:
        return execute_query("SELECT 1 AS ok", fetch="one") is not None
    except pymysql.Error:
        return False
