"""Textual signals recognised in queries and engine error messages.

The engine reports neither "this statement wrote a file" nor "this statement
needed a file it could not see" as structured data, so both are recovered
from text:

* a ``COPY ... TO '<name>'`` statement marks a successful query as
  export-producing;
* a DuckDB file error naming an absolute path marks a failed query as
  retryable once the host hands over that file.
"""

from __future__ import annotations

import re

COPY_TO_PATTERN = re.compile(r"COPY\s+(?:.*|\(.*?\))\s+TO\s+'([^']+)'", re.IGNORECASE)

_LINE_COMMENT = re.compile(r"--[^\n]*")

# Absolute POSIX path or Windows drive path.
_ABSOLUTE_PATH = r"(?:/|[A-Za-z]:[\\/])[^\"]*"

MISSING_FILE_PATTERN = re.compile(
    r"(?:No files found that match the pattern|Cannot open file|Cannot access (?:file|directory))"
    rf"\s*\"(?P<path>{_ABSOLUTE_PATH})\""
)


def strip_line_comments(sql: str) -> str:
    """Remove ``--`` comments (quoted ``--`` inside literals is not expected here)."""
    return _LINE_COMMENT.sub("", sql)


def find_copy_target(sql: str) -> str | None:
    """Return the destination name of the first COPY ... TO statement, if any."""
    match = COPY_TO_PATTERN.search(strip_line_comments(sql))
    return match.group(1) if match else None


def find_copy_targets(sql: str) -> list[str]:
    """Return every COPY ... TO destination in ``sql``, in statement order."""
    return [match.group(1) for match in COPY_TO_PATTERN.finditer(strip_line_comments(sql))]


def find_missing_file(error_text: str) -> str | None:
    """Return the absolute path named by a missing-file engine error, if any."""
    match = MISSING_FILE_PATTERN.search(error_text)
    return match.group("path") if match else None
