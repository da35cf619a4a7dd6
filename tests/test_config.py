import unittest

from tabroom.core.config import Settings


class SettingsTests(unittest.TestCase):
    def test_only_documented_options_are_declared(self) -> None:
        self.assertEqual(
            set(Settings.model_fields),
            {
                "app_name",
                "debug",
                "database_url",
                "secret_key",
                "session_max_age",
                "log_level",
                "draw_workers",
                "draw_response_deadline",
                "draw_solver_time_limit",
                "broadcast_queue_size",
            },
        )

    def test_defaults(self) -> None:
        current = Settings(database_url="sqlite+aiosqlite:///:memory:", _env_file=None)
        self.assertEqual(current.draw_workers, 2)
        self.assertEqual(current.draw_response_deadline, 20.0)
        self.assertIsNone(current.draw_solver_time_limit)
        self.assertEqual(current.session_max_age, 43200)
