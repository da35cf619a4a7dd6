import unittest
from types import SimpleNamespace

from tabroom.services.format import (
    check_reply_score,
    check_substantive_score,
    format_total_points,
    positions,
    side_name,
    speaker_position_name,
)


def tournament(**overrides):
    values = {
        "teams_per_side": 2,
        "substantive_speakers": 2,
        "reply_speakers": False,
        "substantive_speech_min_speak": 50.0,
        "substantive_speech_max_speak": 100.0,
        "substantive_speech_step": 0.5,
        "reply_speech_min_speak": None,
        "reply_speech_max_speak": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class FormatTests(unittest.TestCase):
    def test_positions_follow_seq_then_side(self) -> None:
        self.assertEqual(positions(2), [(0, 0), (1, 0), (0, 1), (1, 1)])
        self.assertEqual(positions(1), [(0, 0), (1, 0)])

    def test_side_and_speech_names(self) -> None:
        bp = tournament()
        self.assertEqual(side_name(bp, 0, 1), "CG")
        self.assertEqual(side_name(bp, 1, 1, long=True), "Closing Opposition")
        self.assertEqual(speaker_position_name(bp, 1, 0, 1), "DLO")

        wsdc = tournament(teams_per_side=1, substantive_speakers=3, reply_speakers=True)
        self.assertEqual(speaker_position_name(wsdc, 0, 0, 2), "Gov Member")
        self.assertEqual(speaker_position_name(wsdc, 1, 0, 3), "Opp Reply")

    def test_substantive_scores_sit_on_the_grid(self) -> None:
        t = tournament()
        self.assertTrue(check_substantive_score(t, 75.5))
        self.assertFalse(check_substantive_score(t, 75.25))
        self.assertFalse(check_substantive_score(t, 49.5))
        self.assertFalse(check_substantive_score(t, 100.5))

    def test_reply_range_defaults_to_half_the_substantive_range(self) -> None:
        t = tournament()
        self.assertTrue(check_reply_score(t, 37.25))
        self.assertFalse(check_reply_score(t, 51))
        t = tournament(reply_speech_min_speak=30.0, reply_speech_max_speak=40.0)
        self.assertFalse(check_reply_score(t, 41))

    def test_total_points_per_debate(self) -> None:
        prelim = SimpleNamespace(kind="prelim")
        elim = SimpleNamespace(kind="elim")
        self.assertEqual(format_total_points(tournament(), prelim), 6)
        self.assertEqual(format_total_points(tournament(teams_per_side=1), prelim), 1)
        self.assertEqual(format_total_points(tournament(), elim), 2)
        self.assertEqual(format_total_points(tournament(), elim, is_final=True), 1)
        self.assertEqual(format_total_points(tournament(teams_per_side=1), elim), 1)
