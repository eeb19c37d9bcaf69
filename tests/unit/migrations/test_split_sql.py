"""Unit tests for split_sql_statements()."""

from schemaledger.migrations.migration_executor import split_sql_statements


class TestSplitSqlStatements:

    def test_single_statement_without_semicolon(self):
        assert split_sql_statements("SELECT 1") == ["SELECT 1"]

    def test_multiple_statements(self):
        sql = "CREATE TABLE a (id int);\nCREATE TABLE b (id int);\n"
        assert split_sql_statements(sql) == [
            "CREATE TABLE a (id int)",
            "CREATE TABLE b (id int)",
        ]

    def test_semicolon_inside_string_literal(self):
        sql = "INSERT INTO t (v) VALUES ('a;b'); SELECT 1;"
        assert split_sql_statements(sql) == ["INSERT INTO t (v) VALUES ('a;b')", "SELECT 1"]

    def test_escaped_quote_inside_literal(self):
        sql = "INSERT INTO t (v) VALUES ('it''s; fine');"
        assert split_sql_statements(sql) == ["INSERT INTO t (v) VALUES ('it''s; fine')"]

    def test_quoted_identifier(self):
        sql = 'CREATE TABLE "odd;name" (id int);'
        assert split_sql_statements(sql) == ['CREATE TABLE "odd;name" (id int)']

    def test_line_comments_dropped(self):
        sql = "-- create things\nCREATE TABLE a (id int); -- done\n-- trailing;"
        assert split_sql_statements(sql) == ["CREATE TABLE a (id int)"]

    def test_block_comments_dropped(self):
        sql = "/* header; with semicolon */ SELECT 1; /* tail */"
        assert split_sql_statements(sql) == ["SELECT 1"]

    def test_dollar_quoted_body(self):
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $$ BEGIN RETURN 1; END; $$ LANGUAGE plpgsql;\n"
            "SELECT f();"
        )
        statements = split_sql_statements(sql)
        assert len(statements) == 2
        assert statements[0].endswith("$$ LANGUAGE plpgsql")
        assert "RETURN 1; END;" in statements[0]

    def test_tagged_dollar_quote(self):
        sql = "DO $body$ BEGIN PERFORM 1; END $body$; SELECT 2;"
        assert split_sql_statements(sql) == ["DO $body$ BEGIN PERFORM 1; END $body$", "SELECT 2"]

    def test_empty_input(self):
        assert split_sql_statements("") == []
        assert split_sql_statements(" ;; -- nothing\n") == []
