import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from spark import SecurityContext
from spark.errors import InputError, MissingArgumentError
from spark.security import require_context


class TestSecurityContext(unittest.TestCase):
    def test_scope_follows_team(self) -> None:
        user = SecurityContext(user_id="user-1")
        self.assertFalse(user.is_team_scoped)
        self.assertEqual((user.scope_column(), user.scope_value()), ("userId", "user-1"))
        team = user.for_team("team-1")
        self.assertTrue(team.is_team_scoped)
        self.assertEqual((team.scope_column(), team.scope_value()), ("teamId", "team-1"))
        self.assertEqual(team.user_id, "user-1")

    def test_require_context(self) -> None:
        ctx = SecurityContext(user_id="user-1", team_id="team-1")
        self.assertIs(require_context(ctx, require_team=True), ctx)
        for bad in (None, SecurityContext(user_id=""), SecurityContext(user_id="  ")):
            with self.assertRaises(MissingArgumentError) as cm:
                require_context(bad)
            self.assertEqual(cm.exception.argument, "user_id")
            self.assertIsInstance(cm.exception, InputError)

    def test_require_team(self) -> None:
        with self.assertRaises(MissingArgumentError) as cm:
            require_context(SecurityContext(user_id="user-1"), require_team=True)
        self.assertEqual(str(cm.exception), "Team ID is required")


if __name__ == "__main__":
    unittest.main()
