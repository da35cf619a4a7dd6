import unittest
from decimal import Decimal

from tabroom.core.errors import InvalidConfiguration
from tabroom.services.metrics import PullupMetric, SpeakerMetric, parse_team_metrics
from tabroom.services.standings import (
    DebateRecord,
    SpeakerScoreRecord,
    StandingsConfig,
    StandingsInput,
    compute_speaker_standings,
    compute_team_standings,
)


def _debate(debate_id, a, b, points_a, speaks_a=(), speaks_b=(), pullups=(), round_seq=1):
    scores = [SpeakerScoreRecord(f"{a}-s{i}", a, i, Decimal(str(v))) for i, v in enumerate(speaks_a)]
    scores += [SpeakerScoreRecord(f"{b}-s{i}", b, i, Decimal(str(v))) for i, v in enumerate(speaks_b)]
    return DebateRecord(
        debate_id=debate_id,
        round_seq=round_seq,
        teams={a: (0, 0), b: (1, 0)},
        points={a: points_a, b: 1 - points_a},
        pullups=set(pullups),
        speaker_scores=scores,
    )


def _input(debates, teams=("A", "B", "C", "D")):
    speakers = {f"{team}-s{i}": team for team in teams for i in range(2)}
    return StandingsInput(team_ids=list(teams), debates=debates, speaker_teams=speakers)


class TeamStandingsTests(unittest.TestCase):
    def test_orders_by_wins_then_speaks_and_groups_ties(self) -> None:
        data = _input(
            [
                _debate("d1", "A", "B", 1, (75, 75), (70, 70)),
                _debate("d2", "C", "D", 1, (75, 75), (70, 70)),
            ]
        )
        config = StandingsConfig(team_metrics=parse_team_metrics(["wins", "total_speaker_score"]))
        standings = compute_team_standings(config, data)

        self.assertEqual(standings.bands, [["A", "C"], ["B", "D"]])
        self.assertEqual(standings.rank_of("A"), 1)
        self.assertEqual(standings.rank_of("C"), 1)
        self.assertEqual(standings.rank_of("B"), 3)
        self.assertEqual(standings.values["A"], [Decimal(1), Decimal(150)])
        self.assertEqual(standings.points, {"A": 1, "B": 0, "C": 1, "D": 0})

    def test_n_times_achieved_counts_exact_points(self) -> None:
        data = _input([_debate("d1", "A", "B", 1), _debate("d2", "A", "C", 1), _debate("d3", "B", "C", 1)])
        config = StandingsConfig(team_metrics=parse_team_metrics(["n_times_achieved(0)"]))
        standings = compute_team_standings(config, data)
        self.assertEqual(standings.values["C"], [Decimal(2)])
        self.assertEqual(standings.values["A"], [Decimal(0)])
        self.assertEqual(standings.values["D"], [Decimal(0)])

    def test_average_uses_bankers_rounding_and_zero_without_debates(self) -> None:
        data = _input(
            [
                _debate("d1", "A", "B", 1, (70.25, 70), (70, 70), round_seq=1),
                _debate("d2", "A", "B", 1, (70, 70), (70, 70), round_seq=2),
                _debate("d3", "A", "B", 0, (70, 70), (70, 70), round_seq=3),
                _debate("d4", "A", "B", 0, (70, 70), (70, 70), round_seq=4),
            ]
        )
        config = StandingsConfig(team_metrics=parse_team_metrics(["avg_total_speaker_score"]))
        standings = compute_team_standings(config, data)
        # 560.25 / 4 = 140.0625 -> 140.06
        self.assertEqual(standings.values["A"], [Decimal("140.06")])
        self.assertEqual(standings.values["C"], [Decimal("0")])

    def test_average_divides_by_completed_rounds_not_own_debates(self) -> None:
        data = _input(
            [
                _debate("d1", "A", "B", 1, (75, 75), (75, 75), round_seq=1),
                _debate("d2", "A", "B", 1, (75, 75), (75, 75), round_seq=2),
                # C и D пропустили первый раунд.
                _debate("d3", "C", "D", 1, (75, 75), (75, 75), round_seq=2),
            ]
        )
        config = StandingsConfig(team_metrics=parse_team_metrics(["avg_total_speaker_score"]))
        standings = compute_team_standings(config, data)
        self.assertEqual(standings.values["A"], [Decimal("150.00")])
        self.assertEqual(standings.values["C"], [Decimal("75.00")])

        data.round_count = 3
        standings = compute_team_standings(config, data)
        self.assertEqual(standings.values["C"], [Decimal("50.00")])

    def test_draw_strength_needs_its_source_metric_first(self) -> None:
        data = _input([_debate("d1", "A", "B", 1)])
        with self.assertRaises(InvalidConfiguration):
            compute_team_standings(StandingsConfig(team_metrics=parse_team_metrics(["draw_strength_by_wins"])), data)
        with self.assertRaises(InvalidConfiguration):
            compute_team_standings(
                StandingsConfig(team_metrics=parse_team_metrics(["draw_strength_by_speaks", "avg_total_speaker_score"])),
                data,
            )

    def test_draw_strength_by_wins_sums_opponent_wins(self) -> None:
        data = _input([_debate("d1", "A", "B", 1), _debate("d2", "C", "A", 1), _debate("d3", "B", "C", 1)])
        config = StandingsConfig(team_metrics=parse_team_metrics(["wins", "draw_strength_by_wins"]))
        standings = compute_team_standings(config, data)
        # A встречалась с B (1 победа) и C (1 победа).
        self.assertEqual(standings.values["A"], [Decimal(1), Decimal(2)])

    def test_ballots_metric_requires_individual_ballots(self) -> None:
        data = _input([_debate("d1", "A", "B", 1)])
        data.debates[0].ballots_for = {"A": 2, "B": 1}
        with self.assertRaises(InvalidConfiguration):
            compute_team_standings(StandingsConfig(team_metrics=parse_team_metrics(["ballots"])), data)
        standings = compute_team_standings(
            StandingsConfig(team_metrics=parse_team_metrics(["ballots"]), individual_ballots=True), data
        )
        self.assertEqual(standings.values["A"], [Decimal(2)])

    def test_speakers_over_missed_debate_cutoff_are_excluded(self) -> None:
        first = _debate("d1", "A", "B", 1, (70, 70), (70, 70))
        # Во втором дебате второй спикер A не выступал.
        second = _debate("d2", "A", "B", 1, (70,), (70, 70))
        second.speaker_scores.append(SpeakerScoreRecord("A-s0", "A", 1, Decimal(70)))
        data = _input([first, second])
        config = StandingsConfig(team_metrics=parse_team_metrics(["total_speaker_score"]), exclude_speakers_after=0)
        standings = compute_team_standings(config, data)
        self.assertEqual(standings.values["A"], [Decimal(210)])
        self.assertEqual(standings.values["B"], [Decimal(280)])

    def test_pullup_extras_are_computed_on_demand(self) -> None:
        data = _input(
            [_debate("d1", "A", "B", 1, (70, 70), (72, 72), pullups=("B",)), _debate("d2", "C", "D", 1)]
        )
        config = StandingsConfig(
            team_metrics=parse_team_metrics(["wins"]),
            pullup_metrics=[PullupMetric.FEWER_PREVIOUS_PULLUPS, PullupMetric.LOWEST_DS_RANK, PullupMetric.LOWEST_DS_SPEAKS],
        )
        standings = compute_team_standings(config, data)
        self.assertEqual(standings.extra_metric("B", "fewer_previous_pullups"), Decimal(1))
        self.assertEqual(standings.extra_metric("A", "fewer_previous_pullups"), Decimal(0))
        # B встречалась с A (ранг 1).
        self.assertEqual(standings.extra_metric("B", "draw_strength_by_rank"), Decimal(1))
        self.assertEqual(standings.extra_metric("B", "avg_total_speaker_score"), Decimal("144.00"))


class SpeakerStandingsTests(unittest.TestCase):
    def test_ranks_by_average_then_lower_deviation(self) -> None:
        data = _input(
            [
                _debate("d1", "A", "B", 1, (75, 70), (70, 74)),
                _debate("d2", "A", "B", 1, (71, 70), (70, 72)),
            ],
            teams=("A", "B"),
        )
        config = StandingsConfig(
            team_metrics=[], speaker_metrics=[SpeakerMetric.AVG, SpeakerMetric.STDDEV], substantive_speakers=2
        )
        rows = compute_speaker_standings(config, data)
        self.assertEqual(rows[0].speaker_id, "B-s1")
        self.assertEqual(rows[0].values, [Decimal("73.00"), Decimal("1.00")])
        self.assertEqual(rows[1].speaker_id, "A-s0")
        self.assertEqual([row.rank for row in rows], [1, 2, 3, 3])
