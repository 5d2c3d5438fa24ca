import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.query_builder import POSTGRES, SQLITE, QueryBuilder
from entity_registry import EntityDefinition, FieldDefinition, parse_entity_definition
from spark.errors import (
    InvalidFilterFieldError,
    InvalidIdentifierError,
    InvalidPaginationError,
    NoFieldsToUpdateError,
)
from spark.security import SecurityContext


DEFINITION = parse_entity_definition(
    {
        "slug": "customers",
        "fields": [
            {"name": "name", "type": "text", "searchable": True},
            {"name": "email", "type": "email", "searchable": True},
            {"name": "status", "type": "select", "options": ["active", "inactive"]},
        ],
    }
)
COLUMNS = '"id", "userId", "teamId", "createdAt", "updatedAt", "name", "email", "status"'
USER = SecurityContext(user_id="user-1")
TEAM = SecurityContext(user_id="user-1", team_id="team-1")


class TestQueryBuilderPostgres(unittest.TestCase):
    def setUp(self) -> None:
        self.qb = QueryBuilder(DEFINITION, POSTGRES)

    def test_select_by_id_user_scope(self) -> None:
        query = self.qb.select_by_id("abc", USER)
        self.assertEqual(query.sql, f'SELECT {COLUMNS} FROM "customers" WHERE "userId" = %s AND "id" = %s')
        self.assertEqual(query.params, ["user-1", "abc"])
        self.assertEqual(query.name, "customers.get")

    def test_select_by_id_team_scope(self) -> None:
        query = self.qb.select_by_id("abc", TEAM)
        self.assertIn('WHERE "teamId" = %s AND "id" = %s', query.sql)
        self.assertEqual(query.params, ["team-1", "abc"])

    def test_every_statement_is_scoped(self) -> None:
        queries = [
            self.qb.select_by_id("abc", USER),
            self.qb.exists("abc", USER),
            self.qb.count(USER, {"status": "active"}),
            self.qb.select_page(USER, {"status": "active"}, search="a"),
            self.qb.update("abc", USER, {"name": "x"}),
            self.qb.delete_by_id("abc", USER),
            self.qb.delete_many(["a", "b"], USER),
        ]
        for query in queries:
            self.assertIn('WHERE "userId" = %s', query.sql, query.name)
            self.assertIn("user-1", query.params, query.name)

    def test_filter_values_are_parameters(self) -> None:
        hostile = "x'; DROP TABLE customers; --"
        query = self.qb.count(TEAM, {"name": hostile})
        self.assertNotIn(hostile, query.sql)
        self.assertEqual(query.sql, 'SELECT COUNT(*) AS count FROM "customers" WHERE "teamId" = %s AND "name" = %s')
        self.assertEqual(query.params, ["team-1", hostile])

    def test_filter_none_and_lists(self) -> None:
        query = self.qb.count(USER, {"email": None, "status": ["active", "inactive"]})
        self.assertIn('"email" IS NULL', query.sql)
        self.assertIn('"status" = ANY(%s)', query.sql)
        self.assertEqual(query.params, ["user-1", ["active", "inactive"]])

    def test_unknown_filter_field(self) -> None:
        for key in ("nope", "name; --", "1=1"):
            with self.assertRaises(InvalidFilterFieldError):
                self.qb.count(USER, {key: "x"})

    def test_team_filter_adds_to_context_scope(self) -> None:
        query = self.qb.count(USER, team_id="team-7")
        self.assertEqual(query.sql, 'SELECT COUNT(*) AS count FROM "customers" WHERE "userId" = %s AND "teamId" = %s')
        self.assertEqual(query.params, ["user-1", "team-7"])

    def test_search_spans_searchable_fields(self) -> None:
        query = self.qb.count(USER, search=" acme ")
        self.assertIn('("name" ILIKE %s OR "email" ILIKE %s)', query.sql)
        self.assertEqual(query.params, ["user-1", "%acme%", "%acme%"])
        self.assertEqual(self.qb.count(USER, search="   ").params, ["user-1"])

    def test_page_defaults(self) -> None:
        query = self.qb.select_page(USER)
        self.assertTrue(query.sql.endswith('ORDER BY "createdAt" DESC, "id" DESC LIMIT %s OFFSET %s'))
        self.assertEqual(query.params, ["user-1", 20, 0])
        self.assertEqual(query.name, "customers.list")

    def test_page_order_fallback(self) -> None:
        query = self.qb.select_page(USER, order_by='name"; DROP TABLE x; --', order_dir="sideways")
        self.assertIn('ORDER BY "createdAt" DESC', query.sql)
        self.assertNotIn("DROP", query.sql)
        query = self.qb.select_page(USER, order_by="name", order_dir="ASC")
        self.assertIn('ORDER BY "name" ASC, "id" ASC', query.sql)

    def test_page_validation(self) -> None:
        for limit, offset in ((0, 0), (-1, 0), (10, -1), ("10", 0), (True, 0), (10, 1.5)):
            with self.assertRaises(InvalidPaginationError):
                self.qb.select_page(USER, limit=limit, offset=offset)

    def test_insert_binds_context(self) -> None:
        query = self.qb.insert(TEAM, "new-id", {"name": "Acme", "email": None, "bogus": 1})
        self.assertEqual(
            query.sql,
            'INSERT INTO "customers" ("id", "userId", "teamId", "createdAt", "updatedAt", "name") '
            f"VALUES (%s, %s, %s, now(), now(), %s) RETURNING {COLUMNS}",
        )
        self.assertEqual(query.params, ["new-id", "user-1", "team-1", "Acme"])

    def test_update_refreshes_updated_at(self) -> None:
        query = self.qb.update("abc", TEAM, {"status": "inactive", "id": "hijack"})
        self.assertEqual(
            query.sql,
            'UPDATE "customers" SET "status" = %s, "updatedAt" = now() '
            f'WHERE "teamId" = %s AND "id" = %s RETURNING {COLUMNS}',
        )
        self.assertEqual(query.params, ["inactive", "team-1", "abc"])

    def test_update_without_fields(self) -> None:
        with self.assertRaises(NoFieldsToUpdateError):
            self.qb.update("abc", USER, {"createdAt": "2020-01-01"})

    def test_delete_many(self) -> None:
        query = self.qb.delete_many(["a", "b"], USER)
        self.assertEqual(query.sql, 'DELETE FROM "customers" WHERE "userId" = %s AND "id" = ANY(%s)')
        self.assertEqual(query.params, ["user-1", ["a", "b"]])

    def test_unsafe_definition_is_rejected(self) -> None:
        with self.assertRaises(InvalidIdentifierError):
            QueryBuilder(EntityDefinition(slug="bad", table_name="bad; drop"), POSTGRES)
        with self.assertRaises(InvalidIdentifierError):
            QueryBuilder(EntityDefinition(slug="bad", fields=(FieldDefinition(name='x" --'),)), POSTGRES)


class TestQueryBuilderSqlite(unittest.TestCase):
    def setUp(self) -> None:
        self.qb = QueryBuilder(DEFINITION, SQLITE)

    def test_placeholders_and_like(self) -> None:
        query = self.qb.count(USER, {"status": "active"}, search="ac")
        self.assertNotIn("%s", query.sql)
        self.assertIn('"status" = ?', query.sql)
        self.assertIn('"name" LIKE ?', query.sql)

    def test_membership_expands(self) -> None:
        query = self.qb.delete_many(["a", "b", "c"], USER)
        self.assertEqual(query.sql, 'DELETE FROM "customers" WHERE "userId" = ? AND "id" IN (?, ?, ?)')
        self.assertEqual(query.params, ["user-1", "a", "b", "c"])

    def test_empty_membership_matches_nothing(self) -> None:
        query = self.qb.count(USER, {"status": []})
        self.assertIn("1 = 0", query.sql)
        self.assertEqual(query.params, ["user-1"])


if __name__ == "__main__":
    unittest.main()
