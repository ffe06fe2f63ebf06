"""
PostgreSQL Row-Level Security (RLS) context management.

This module manages PostgreSQL session configuration parameters that
control RLS policies. The parameters are set per-connection and used
by database-level policies to filter data (see billing migration
0002_enable_rls).

Parameters set:
- app.current_org_id: The current tenant's organization ID
- app.rls_bypass: "on" or "off" to bypass RLS policies

Usage:
    # In middleware
    set_current_org_id(org_id)
    set_rls_bypass(settings.RLS_BYPASS)

    # In code that needs cross-tenant access
    with rls_bypass():
        users = User.objects.all()

    # Cleanup
    clear_rls_context()
"""
from contextlib import contextmanager
from typing import Optional

from django.db import connection as default_connection


def _get_connection(conn=None):
    if conn is not None:
        return conn
    return default_connection


def _set_config(name: str, value: Optional[str], *, conn=None) -> None:
    """
    Set a PostgreSQL session configuration parameter.

    Args:
        name: Parameter name (e.g., "app.current_org_id")
        value: Parameter value, or None to reset
        conn: Database connection to use
    """
    conn = _get_connection(conn)

    # Skip for non-PostgreSQL databases (SQLite in tests)
    if conn.vendor != "postgresql":
        return

    with conn.cursor() as cursor:
        if value is None:
            cursor.execute(f"RESET {name}")
        else:
            cursor.execute(
                "SELECT set_config(%s, %s, false)",
                [name, value],
            )


def _get_config(name: str, *, conn=None) -> Optional[str]:
    conn = _get_connection(conn)

    if conn.vendor != "postgresql":
        return None

    with conn.cursor() as cursor:
        cursor.execute("SELECT current_setting(%s, true)", [name])
        row = cursor.fetchone()
    return row[0] if row else None


def set_current_org_id(org_id: Optional[int], *, conn=None) -> None:
    """Set the current organization ID for RLS filtering (None clears it)."""
    if org_id is None:
        _set_config("app.current_org_id", None, conn=conn)
        return
    _set_config("app.current_org_id", str(org_id), conn=conn)


def get_current_org_id(*, conn=None) -> Optional[int]:
    value = _get_config("app.current_org_id", conn=conn)
    if value:
        try:
            return int(value)
        except ValueError:
            return None
    return None


def set_rls_bypass(enabled: bool, *, conn=None) -> None:
    """
    Enable or disable RLS bypass.

    When bypass is enabled, RLS policies allow all operations.
    This is used for:
    - Testing environments
    - Sign-up/sign-in, which run before an organization is known
    - Cross-tenant maintenance jobs (overdue sweep, metrics)
    """
    _set_config("app.rls_bypass", "on" if enabled else "off", conn=conn)


def is_rls_bypassed(*, conn=None) -> bool:
    return _get_config("app.rls_bypass", conn=conn) == "on"


@contextmanager
def rls_bypass(*, conn=None):
    """
    Context manager to temporarily bypass RLS.

    Saves the previous bypass state and restores it on exit.
    """
    previous = _get_config("app.rls_bypass", conn=conn)
    set_rls_bypass(True, conn=conn)
    try:
        yield
    finally:
        if previous is None:
            _set_config("app.rls_bypass", None, conn=conn)
        else:
            _set_config("app.rls_bypass", previous, conn=conn)


def clear_rls_context(*, conn=None) -> None:
    """
    Clear all RLS-related session parameters.

    Called in middleware finally blocks so the connection is clean for the
    next request.
    """
    _set_config("app.current_org_id", None, conn=conn)
    _set_config("app.rls_bypass", None, conn=conn)


def set_rls_context(org_id: int, bypass: bool = False, *, conn=None) -> None:
    set_current_org_id(org_id, conn=conn)
    set_rls_bypass(bypass, conn=conn)
