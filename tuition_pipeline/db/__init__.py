"""DoltDB / MySQL client and repositories.

Provides:
- Thread-local connection reuse (MySQL-compatible protocol)
- Repository classes for the quota counter, extraction results and verification cache
"""

from .client import (
    check_connection,
    execute_increment,
    execute_query,
    execute_write,
    get_connection,
    get_cursor,
    init_schema,
)
from .repository import ExtractionResultRepository, QuotaRepository, VerificationCacheRepository

__all__ = [
    # Client
    "get_connection",
    "get_cursor",
    "execute_query",
    "execute_write",
    "execute_increment",
    "check_connection",
    "init_schema",
    # Repositories
    "ExtractionResultRepository",
    "QuotaRepository",
    "VerificationCacheRepository",
]
