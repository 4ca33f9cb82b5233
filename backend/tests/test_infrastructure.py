"""
Document numbers, schema check and CLI tests.
"""

import pytest
import sqlalchemy as sa
from sqlalchemy import text

from distro.extensions import db
from distro.models import User
from distro.services.concurrency import run_in_transaction
from distro.services.document_service import next_document_number, next_order_number
from distro.services.schema_service import verify_schema, find_schema_drift, SchemaMismatchError


class TestDocumentNumbers:
    def test_sequence_starts_at_one_and_increases(self, db_session):
        numbers = [run_in_transaction(next_order_number) for _ in range(3)]
        assert numbers == ["ORD-000001", "ORD-000002", "ORD-000003"]

    def test_rolled_back_number_is_issued_again(self, db_session):
        run_in_transaction(next_order_number)

        class Boom(Exception):
            pass

        def _fail():
            next_order_number()
            raise Boom()

        with pytest.raises(Boom):
            run_in_transaction(_fail)

        # The failed transaction rolled back its increment
        assert run_in_transaction(next_order_number) == "ORD-000002"

    def test_types_are_independent(self, db_session):
        assert run_in_transaction(lambda: next_document_number(document_type="TEST", prefix="T", pad=3)) == "T-001"
        assert run_in_transaction(next_order_number) == "ORD-000001"


class TestSchemaCheck:
    def test_matching_schema(self, db_session):
        verify_schema()
        assert find_schema_drift() == ([], {})

    def test_missing_column_is_reported(self, db_session):
        db.session.execute(text("CREATE TABLE scratch_check (id INTEGER PRIMARY KEY)"))
        db.session.commit()
        table = sa.Table(
            "scratch_check", db.metadata,
            sa.Column("id", sa.Integer, primary_key=True),
            sa.Column("label", sa.String(32)),
        )
        try:
            with pytest.raises(SchemaMismatchError) as exc:
                verify_schema()
            assert exc.value.missing_columns == {"scratch_check": ["label"]}
        finally:
            db.metadata.remove(table)
            db.session.execute(text("DROP TABLE scratch_check"))
            db.session.commit()


class TestCli:
    def test_create_and_list_users(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--name", "Dina Driver",
            "--email", "Dina@Distro.test",
            "--role", "Driver",
            "--password", "Password123",
        ])
        assert "PASS Created user: dina@distro.test" in result.output

        result = runner.invoke(args=["users", "list", "--role", "Driver"])
        assert "dina@distro.test" in result.output

    def test_weak_password_is_rejected(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create", "--name", "X", "--email", "x@distro.test", "--role", "Driver", "--password", "short",
        ])
        assert "FAIL" in result.output
        assert db_session.query(User).count() == 0

    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init"])
        result = runner.invoke(args=["system", "init"])
        assert "already exists" in result.output
        assert db_session.query(User).count() == 1

    def test_check_schema(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "check-schema"])
        assert result.exit_code == 0
        assert "PASS" in result.output
