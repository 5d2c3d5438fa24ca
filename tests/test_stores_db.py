import os
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

USE_DB = os.getenv("USE_DB", "0") == "1"
DB_URL = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")

if USE_DB and DB_URL:
    from app.db import execute, get_conn, get_db_query_log, reset_db_stats
    from app.entity_engine import EntityEngine, ListOptions
    from app.stores_db import DbRelationalStore
    from app.team_members import TeamMemberService
    from entity_registry import EntityRegistry
    from spark.security import SecurityContext
    from spark.team_roles import TeamRole


@unittest.skipUnless(USE_DB and DB_URL, "DB store test requires USE_DB=1 and DATABASE_URL/SUPABASE_DB_URL")
class TestDbRelationalStore(unittest.TestCase):
    def setUp(self) -> None:
        self.table = f"test_entities_{uuid.uuid4().hex[:8]}"
        try:
            with get_conn() as conn:
                execute(
                    conn,
                    f"""
                    create table "{self.table}" (
                      "id" text primary key,
                      "userId" text not null,
                      "teamId" text,
                      "createdAt" timestamptz not null,
                      "updatedAt" timestamptz not null,
                      "title" text,
                      "status" text
                    )
                    """,
                )
        except Exception as exc:
            self.skipTest(f"cannot create test table: {exc}")
        registry = EntityRegistry()
        registry.register(
            {
                "slug": "test_entities",
                "tableName": self.table,
                "fields": [
                    {"name": "title", "type": "text", "required": True, "searchable": True},
                    {"name": "status", "type": "select", "options": ["active", "inactive"]},
                ],
            }
        )
        self.engine = EntityEngine(registry, DbRelationalStore())
        self.ctx = SecurityContext(user_id="user-1", team_id=f"team-{uuid.uuid4().hex[:6]}")

    def tearDown(self) -> None:
        with get_conn() as conn:
            execute(conn, f'drop table if exists "{self.table}"')

    def test_crud_round_trip(self) -> None:
        created = self.engine.create("test_entities", self.ctx, {"title": "X", "status": "active"})
        self.assertEqual(self.engine.get_by_id("test_entities", created["id"], self.ctx), created)
        updated = self.engine.update("test_entities", created["id"], self.ctx, {"status": "inactive"})
        self.assertEqual(updated["status"], "inactive")
        self.assertTrue(self.engine.delete("test_entities", created["id"], self.ctx))
        self.assertFalse(self.engine.delete("test_entities", created["id"], self.ctx))

    def test_list_counts_then_pages(self) -> None:
        for title in ("Alpha", "bravo", "Charlie"):
            self.engine.create("test_entities", self.ctx, {"title": title, "status": "active"})
        reset_db_stats()
        result = self.engine.list("test_entities", self.ctx, ListOptions(search="BRAVO", limit=1))
        self.assertEqual(result.total, 1)
        self.assertEqual(result.data[0]["title"], "bravo")
        names = [name for name in get_db_query_log() if name.startswith("test_entities.")]
        self.assertEqual(names, ["test_entities.count", "test_entities.list"])

    def test_delete_many_uses_array_binding(self) -> None:
        ids = [self.engine.create("test_entities", self.ctx, {"title": f"r{i}"})["id"] for i in range(3)]
        self.assertEqual(self.engine.delete_many("test_entities", ids[:2] + ["missing"], self.ctx), 2)
        self.assertEqual(self.engine.count("test_entities", self.ctx), 1)


@unittest.skipUnless(USE_DB and DB_URL, "DB store test requires USE_DB=1 and DATABASE_URL/SUPABASE_DB_URL")
class TestDbTeamMembers(unittest.TestCase):
    def setUp(self) -> None:
        try:
            with get_conn() as conn:
                execute(
                    conn,
                    """
                    create table if not exists "team_members" (
                      "id" text primary key,
                      "teamId" text not null,
                      "userId" text not null,
                      "role" text not null,
                      "invitedBy" text,
                      "joinedAt" timestamptz not null,
                      "updatedAt" timestamptz not null,
                      unique ("teamId", "userId")
                    )
                    """,
                )
        except Exception as exc:
            self.skipTest(f"team_members not available: {exc}")
        self.team_id = f"team-{uuid.uuid4().hex[:8]}"
        self.members = TeamMemberService(DbRelationalStore())

    def tearDown(self) -> None:
        with get_conn() as conn:
            execute(conn, 'delete from "team_members" where "teamId" = %s', [self.team_id])

    def test_transfer_ownership(self) -> None:
        self.members.add(self.team_id, "owner-1", "owner")
        self.members.add(self.team_id, "member-1", "member", invited_by="owner-1")
        self.members.transfer_ownership(self.team_id, "member-1", "owner-1")
        self.assertEqual(self.members.get_role(self.team_id, "owner-1"), TeamRole.ADMIN)
        self.assertEqual(self.members.get_role(self.team_id, "member-1"), TeamRole.OWNER)
        owners = self.members.list_by_role(self.team_id, "owner", "member-1")
        self.assertEqual([m["userId"] for m in owners], ["member-1"])


if __name__ == "__main__":
    unittest.main()
