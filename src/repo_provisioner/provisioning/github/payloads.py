"""Defensive accessors for JSON payloads returned by GitHub."""

from __future__ import annotations

from typing import Any

from repo_provisioner.provisioning.errors import TransientError


def as_dict(value: object) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def required_str(obj: dict[str, Any], key: str, *, context: str) -> str:
    """Return a non-empty string field, treating its absence as a malformed response."""

    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        raise TransientError(f"Malformed {context} response: missing {key}")
    return value


def nodes(connection: object) -> list[dict[str, Any]]:
    """Return the dict nodes of a GraphQL connection (empty when absent)."""

    conn = as_dict(connection)
    if conn is None:
        return []
    raw = conn.get("nodes")
    if not isinstance(raw, list):
        return []
    return [n for n in raw if isinstance(n, dict)]


def next_cursor(connection: dict[str, Any]) -> str | None:
    """Return the cursor of the next page, or None on the last page."""

    page_info = as_dict(connection.get("pageInfo")) or {}
    end_cursor = page_info.get("endCursor")
    if not page_info.get("hasNextPage") or not isinstance(end_cursor, str):
        return None
    return end_cursor
