import random
import unittest

from tabroom.core.errors import InvalidTeamCount
from tabroom.services.drawalgs import (
    DrawInput,
    check_team_count,
    generate_power_draw,
    generate_random_draw,
    pullup_preference,
)
from tabroom.services.metrics import PullupMetric, parse_team_metrics
from tabroom.services.standings import StandingsConfig, StandingsInput, compute_team_standings


class PowerDrawTests(unittest.TestCase):
    def assert_valid_draw(self, rooms, team_ids, teams_per_side, points) -> None:
        placed = [team_id for room in rooms for team_id, _, _ in room.positions()]
        self.assertEqual(sorted(placed), sorted(team_ids))
        for room in rooms:
            seats = {(side, seq) for _, side, seq in room.positions()}
            self.assertEqual(seats, {(side, seq) for side in (0, 1) for seq in range(teams_per_side)})
            for team_id, _, _ in room.positions():
                self.assertGreaterEqual(room.bracket, points[team_id])

    def test_bp_prelim_respects_brackets(self) -> None:
        team_ids = [f"t{index}" for index in range(8)]
        points = dict(zip(team_ids, [3, 2, 2, 1, 1, 0, 0, 0]))
        draw_input = DrawInput(
            team_ids=team_ids,
            teams_per_side=2,
            points=points,
            pullup_metrics=[PullupMetric.RANDOM],
        )
        rooms = generate_power_draw(draw_input, random.Random(7))

        self.assertEqual(len(rooms), 2)
        self.assert_valid_draw(rooms, team_ids, 2, points)
        self.assertEqual(rooms[0].bracket, 3)
        self.assertIn("t0", {team_id for team_id, _, _ in rooms[0].positions()})
        self.assertEqual(len(rooms[0].pullups), 3)
        # Тройку подтягивают из самых сильных команд ниже корзины.
        self.assertTrue({"t1", "t2"} <= rooms[0].pullups)
        self.assertTrue(rooms[0].bracket >= rooms[1].bracket)

    def test_history_balances_positions(self) -> None:
        draw_input = DrawInput(
            team_ids=["a", "b"],
            teams_per_side=1,
            points={"a": 1, "b": 1},
            history={"a": [3, 0], "b": [0, 3]},
        )
        rooms = generate_power_draw(draw_input, random.Random(1))
        self.assertEqual(len(rooms), 1)
        self.assertEqual(rooms[0].props, ["b"])
        self.assertEqual(rooms[0].opps, ["a"])
        self.assertEqual(rooms[0].pullups, set())

    def test_elim_ignores_points(self) -> None:
        team_ids = ["a", "b", "c", "d"]
        points = {"a": 4, "b": 0, "c": 2, "d": 1}
        draw_input = DrawInput(team_ids=team_ids, teams_per_side=1, points=points, elim=True)
        rooms = generate_power_draw(draw_input, random.Random(3))
        self.assertEqual(len(rooms), 2)
        self.assertEqual(sorted(t for room in rooms for t, _, _ in room.positions()), team_ids)
        self.assertTrue(all(not room.pullups for room in rooms))

    def test_team_count_must_fill_rooms(self) -> None:
        with self.assertRaises(InvalidTeamCount):
            check_team_count(0, 1)
        with self.assertRaises(InvalidTeamCount):
            check_team_count(6, 2)
        check_team_count(8, 2)
        with self.assertRaises(InvalidTeamCount):
            generate_power_draw(DrawInput(team_ids=["a", "b", "c"], teams_per_side=1, points={}), random.Random(0))


class PullupPreferenceTests(unittest.TestCase):
    def test_lowest_rank_is_pulled_up_first(self) -> None:
        team_ids = ["a", "b", "c"]
        data = StandingsInput(team_ids=team_ids, debates=[])
        standings = compute_team_standings(StandingsConfig(team_metrics=parse_team_metrics(["wins"])), data)
        standings.ranks = {"a": 1, "b": 2, "c": 3}
        draw_input = DrawInput(
            team_ids=team_ids,
            teams_per_side=1,
            points={},
            pullup_metrics=[PullupMetric.LOWEST_RANK],
            standings=standings,
        )
        self.assertEqual(pullup_preference(draw_input), {"c": 0, "b": 1, "a": 2})

    def test_random_metric_gives_everyone_the_same_preference(self) -> None:
        draw_input = DrawInput(
            team_ids=["a", "b"], teams_per_side=1, points={}, pullup_metrics=[PullupMetric.RANDOM]
        )
        self.assertEqual(pullup_preference(draw_input), {"a": 0, "b": 0})


class RandomDrawTests(unittest.TestCase):
    def test_places_every_team_once(self) -> None:
        team_ids = [f"t{index}" for index in range(8)]
        rooms = generate_random_draw(team_ids, 2, random.Random(11))
        self.assertEqual(len(rooms), 2)
        for room in rooms:
            self.assertEqual(len(room.props), 2)
            self.assertEqual(len(room.opps), 2)
        self.assertEqual(sorted(t for room in rooms for t, _, _ in room.positions()), team_ids)

    def test_same_seed_gives_same_draw(self) -> None:
        team_ids = [f"t{index}" for index in range(4)]
        first = generate_random_draw(team_ids, 1, random.Random(5))
        second = generate_random_draw(team_ids, 1, random.Random(5))
        self.assertEqual([room.positions() for room in first], [room.positions() for room in second])
