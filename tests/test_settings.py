"""
Tests for environment-driven settings.
"""

import os
import unittest
from unittest.mock import patch

from config.settings import Settings


class TestSettings(unittest.TestCase):
    @patch.dict(os.environ, {"DISCORD_TOKEN": "abc"}, clear=True)
    def test_defaults(self):
        settings = Settings()
        self.assertEqual(settings.db_path, "data/halloween.db")
        self.assertEqual(settings.pumpkin_tick_seconds, 10)
        self.assertEqual(settings.pumpkin_despawn_seconds, 30)
        self.assertIsNone(settings.restricted_role_id)
        self.assertEqual(settings.validate(), [])

    @patch.dict(
        os.environ,
        {
            "DISCORD_TOKEN": "abc",
            "RESTRICTED_ROLE_ID": "1234",
            "PUMPKIN_ROLE_ID": "not-a-number",
            "PUMPKIN_DESPAWN_SECONDS": "45",
        },
        clear=True,
    )
    def test_overrides(self):
        settings = Settings()
        self.assertEqual(settings.restricted_role_id, 1234)
        self.assertIsNone(settings.pumpkin_role_id)
        self.assertEqual(settings.pumpkin_despawn_seconds, 45)

    @patch.dict(os.environ, {"PUMPKIN_TICK_SECONDS": "0"}, clear=True)
    def test_validate_reports_problems(self):
        errors = Settings().validate()
        self.assertIn("DISCORD_TOKEN is required", errors)
        self.assertIn("PUMPKIN_TICK_SECONDS must be positive", errors)


if __name__ == "__main__":
    unittest.main()
