"""Tests for the schemasense command line."""

import re

import duckdb
import pytest
from typer.testing import CliRunner

from schemasense.cli.main import app

runner = CliRunner()


@pytest.fixture
def warehouse(tmp_path):
    path = tmp_path / "warehouse.duckdb"
    conn = duckdb.connect(str(path))
    conn.execute("CREATE TABLE customers (customer_id INTEGER PRIMARY KEY, email VARCHAR)")
    conn.execute(
        "INSERT INTO customers SELECT i, 'user' || i || '@example.com' FROM range(1, 101) t(i)"
    )
    conn.close()
    return path


@pytest.fixture
def db_args(tmp_path):
    return ["--db", f"sqlite:///{tmp_path / 'meta.db'}", "-P", "acme", "-O", "sales"]


def extract(warehouse, db_args):
    return runner.invoke(app, ["extract", str(warehouse), *db_args, "--no-llm"])


class TestExtract:
    def test_extract_builds_ontology(self, warehouse, db_args):
        result = extract(warehouse, db_args)

        assert result.exit_code == 0, result.output
        assert "Step Results" in result.output
        assert "profiling: succeeded" in result.output
        assert "degraded" in result.output

    def test_missing_source_file(self, tmp_path, db_args):
        result = runner.invoke(app, ["extract", str(tmp_path / "nope.duckdb"), *db_args])
        assert result.exit_code != 0


class TestStatus:
    def test_status_after_extract(self, warehouse, db_args):
        extract(warehouse, db_args)
        result = runner.invoke(app, ["status", *db_args])

        assert result.exit_code == 0, result.output
        assert "succeeded" in result.output
        assert "steps succeeded" in result.output

    def test_status_json(self, warehouse, db_args):
        extract(warehouse, db_args)
        result = runner.invoke(app, ["status", *db_args, "--json"])

        assert result.exit_code == 0, result.output
        assert '"status": "succeeded"' in result.output

    def test_unknown_ontology(self, tmp_path):
        result = runner.invoke(
            app, ["status", "--db", f"sqlite:///{tmp_path / 'meta.db'}", "-O", "missing"]
        )
        assert result.exit_code == 1
        assert "not found" in result.output


class TestChanges:
    """Refresh, list and review through the command line."""

    def test_new_column_is_reviewed(self, warehouse, db_args):
        extract(warehouse, db_args)
        result = runner.invoke(app, ["changes", "list", *db_args])
        assert "No changes" in result.output

        conn = duckdb.connect(str(warehouse))
        conn.execute("ALTER TABLE customers ADD COLUMN signup_source VARCHAR")
        conn.close()
        assert extract(warehouse, db_args).exit_code == 0

        listed = runner.invoke(app, ["changes", "list", *db_args, "--json"])
        assert listed.exit_code == 0, listed.output
        assert '"column_name": "signup_source"' in listed.output
        change_id = re.search(r'"change_id": "([^"]+)"', listed.output).group(1)

        approved = runner.invoke(app, ["changes", "approve", change_id, *db_args, "--by", "dana"])
        assert approved.exit_code == 0, approved.output
        assert "approved" in approved.output

        again = runner.invoke(app, ["changes", "reject", change_id, *db_args])
        assert again.exit_code == 1
