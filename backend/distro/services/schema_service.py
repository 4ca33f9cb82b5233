# Overview: Compare mapped tables and columns with the live database.

"""
Schema check

The application never strips unknown fields per call to cope with an older
database. Instead the mapped schema is compared with what the database
actually has, at startup (SCHEMA_CHECK_ON_STARTUP) or via
`flask system check-schema`, and a mismatch is reported as a whole.
"""

from __future__ import annotations

from sqlalchemy import inspect

from ..extensions import db


class SchemaMismatchError(Exception):
    """The live database is missing tables or columns the models map."""
    def __init__(self, missing_tables: list[str], missing_columns: dict[str, list[str]]):
        self.missing_tables = missing_tables
        self.missing_columns = missing_columns
        parts = []
        if missing_tables:
            parts.append(f"missing tables: {', '.join(missing_tables)}")
        for table, columns in missing_columns.items():
            parts.append(f"{table} missing columns: {', '.join(columns)}")
        super().__init__("Database schema is out of date (" + "; ".join(parts) + "). Run `flask db upgrade`.")


def find_schema_drift() -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(db.engine)
    live_tables = set(inspector.get_table_names())

    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    for table in db.metadata.sorted_tables:
        if table.name not in live_tables:
            missing_tables.append(table.name)
            continue
        live_columns = {col["name"] for col in inspector.get_columns(table.name)}
        absent = [col.name for col in table.columns if col.name not in live_columns]
        if absent:
            missing_columns[table.name] = absent
    return missing_tables, missing_columns


def verify_schema() -> None:
    missing_tables, missing_columns = find_schema_drift()
    if missing_tables or missing_columns:
        raise SchemaMismatchError(missing_tables, missing_columns)
