"""
Core constants for the loader.
"""

from enum import Enum

# Reader buffer sizes (bytes / characters)
SMALL_BUFFER_SIZE = 1024
BUFFER_SIZE = 65536
SHORT_LINE = 128

# Commit frequency sentinel: let the server commit periodically
COMMIT_AUTO = -1

# SQLSTATE classification used when deciding whether to retry
STALE_STATEMENT_CODE = "0A50A"
ROLLBACK_PREFIX = "40"

DEFAULT_ENCODING = "utf-8"
PARTIAL_QUERY_LENGTH = 160


class Format(Enum):
    """Input file formats, valued by their display names."""
    AUTO = "auto"
    CSV = "CSV"
    CSV_HEADER = "CSV with header"
    MYSQL_DUMP = "MySQL"
    SQL_DUMP = "SQL"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_name(cls, name: str) -> "Format":
        """Resolve a display name or member name, case-insensitively."""
        key = name.strip()
        for fmt in cls:
            if key.lower() in (fmt.value.lower(), fmt.name.lower()):
                return fmt
        raise ValueError(f"Unknown format: {name}")


def parse_commit_frequency(value) -> int:
    """Map ``auto`` to COMMIT_AUTO, anything else to an integer row count."""
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text == "auto":
        return COMMIT_AUTO
    return int(text)
