import unittest
from decimal import Decimal

from tabroom.core.errors import BadRequest, BallotDiscrepancy
from tabroom.models.tournament import BallotSetup
from tabroom.services.aggregation import (
    BallotData,
    DebateRepr,
    aggregate_ballots,
    canonical_ballots,
    find_discrepancies,
)


def position_name(side: int, seq: int, position: int) -> str:
    return f"{side}/{seq}/{position}"


def two_team_debate(judges: dict[str, str]) -> DebateRepr:
    return DebateRepr(
        debate_id="d1",
        teams={(0, 0): "A", (1, 0): "B"},
        judges=judges,
        judge_names={judge_id: judge_id.upper() for judge_id in judges},
    )


def two_team_ballot(judge_id: str, a_scores, b_scores, version: int = 1) -> BallotData:
    scores = {}
    for position, score in enumerate(a_scores):
        scores[(0, 0, position)] = (f"a{position}", Decimal(str(score)))
    for position, score in enumerate(b_scores):
        scores[(1, 0, position)] = (f"b{position}", Decimal(str(score)))
    total_a, total_b = sum(a_scores), sum(b_scores)
    points = {"A": int(total_a > total_b), "B": int(total_b > total_a)}
    return BallotData(f"{judge_id}-v{version}", judge_id, version, scores, points)


class IndividualAggregationTests(unittest.TestCase):
    def test_split_panel_with_tie_goes_to_majority_and_chair(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist", "j3": "panelist"})
        ballots = [
            two_team_ballot("j1", (85, 85), (84, 84)),
            two_team_ballot("j2", (84, 85), (85, 84)),
            two_team_ballot("j3", (84, 84), (85, 85)),
        ]
        result = aggregate_ballots(debate, ballots, BallotSetup.INDIVIDUAL, False, True, position_name)
        self.assertEqual(result.team_points, {"A": 1, "B": 0})

    def test_majority_beats_chair(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist", "j3": "panelist"})
        ballots = [
            two_team_ballot("j1", (85, 85), (84, 84)),
            two_team_ballot("j2", (84, 84), (85, 85)),
            two_team_ballot("j3", (84, 84), (85, 85)),
        ]
        result = aggregate_ballots(debate, ballots, BallotSetup.INDIVIDUAL, False, True, position_name)
        self.assertEqual(result.team_points, {"A": 0, "B": 1})

    def test_chair_tie_on_split_panel_is_a_discrepancy(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist", "j3": "panelist"})
        ballots = [
            two_team_ballot("j1", (85, 84), (84, 85)),
            two_team_ballot("j2", (85, 85), (84, 84)),
            two_team_ballot("j3", (84, 84), (85, 85)),
        ]
        with self.assertRaises(BallotDiscrepancy):
            aggregate_ballots(debate, ballots, BallotSetup.INDIVIDUAL, False, True, position_name)

    def test_scores_are_averaged_per_position(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist", "j3": "trainee"})
        ballots = [
            two_team_ballot("j1", (75, 75), (70, 70)),
            two_team_ballot("j2", (76, 75.5), (70, 71)),
            # Бюллетень стажёра не учитывается.
            two_team_ballot("j3", (60, 60), (99, 99)),
        ]
        result = aggregate_ballots(debate, ballots, BallotSetup.INDIVIDUAL, False, True, position_name)
        scores = {speaker_id: score for speaker_id, _, _, score in result.speaker_scores}
        self.assertEqual(scores["a0"], Decimal("75.50"))
        self.assertEqual(scores["a1"], Decimal("75.25"))
        self.assertEqual(scores["b1"], Decimal("70.50"))
        self.assertEqual(result.team_points, {"A": 1, "B": 0})

    def test_missing_voting_ballot_is_rejected(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist"})
        with self.assertRaises(BadRequest) as ctx:
            aggregate_ballots(
                debate, [two_team_ballot("j1", (75, 75), (70, 70))], BallotSetup.INDIVIDUAL, False, True, position_name
            )
        self.assertEqual(ctx.exception.details, ["j2"])


class ConsensusAggregationTests(unittest.TestCase):
    def test_elim_copies_advancing_teams_without_speaks(self) -> None:
        teams = {(0, 0): "A", (1, 0): "B", (0, 1): "C", (1, 1): "D"}
        debate = DebateRepr("d1", teams, {"j1": "chair", "j2": "panelist"})
        points = {"A": 1, "B": 1, "C": 0, "D": 0}
        ballots = [
            BallotData("b1", "j1", 1, {}, dict(points)),
            BallotData("b2", "j2", 1, {}, dict(points)),
        ]
        result = aggregate_ballots(debate, ballots, BallotSetup.CONSENSUS, True, False, position_name)
        self.assertEqual(result.team_points, points)
        self.assertEqual(result.speaker_scores, [])

    def test_prelim_copies_reference_ballot(self) -> None:
        debate = two_team_debate({"j1": "chair"})
        result = aggregate_ballots(
            debate, [two_team_ballot("j1", (75, 74), (70, 70))], BallotSetup.CONSENSUS, False, True, position_name
        )
        self.assertEqual(result.team_points, {"A": 1, "B": 0})
        self.assertEqual(
            result.speaker_scores,
            [
                ("a0", "A", 0, Decimal("75")),
                ("a1", "A", 1, Decimal("74")),
                ("b0", "B", 0, Decimal("70")),
                ("b1", "B", 1, Decimal("70")),
            ],
        )

    def test_disagreement_on_speaker_identity_is_reported(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist"})
        first = two_team_ballot("j1", (75, 75), (70, 70))
        second = two_team_ballot("j2", (75, 75), (70, 70))
        second.scores[(0, 0, 0)] = ("a9", Decimal(75))
        with self.assertRaises(BallotDiscrepancy) as ctx:
            aggregate_ballots(debate, [first, second], BallotSetup.CONSENSUS, False, True, position_name)
        self.assertEqual(len(ctx.exception.problems), 1)
        message = ctx.exception.problems[0]
        self.assertIn("J1", message)
        self.assertIn("J2", message)
        self.assertIn("0/0/0", message)
        self.assertIn("a9", message)

    def test_scores_within_epsilon_agree(self) -> None:
        debate = two_team_debate({"j1": "chair", "j2": "panelist"})
        first = two_team_ballot("j1", (75, 75), (70, 70))
        second = two_team_ballot("j2", (75, 75), (70, 70))
        second.scores[(1, 0, 1)] = ("b1", Decimal("70.0005"))
        self.assertEqual(find_discrepancies(debate, [first, second], position_name, True), [])
        second.scores[(1, 0, 1)] = ("b1", Decimal("70.5"))
        self.assertEqual(len(find_discrepancies(debate, [first, second], position_name, True)), 1)


class CanonicalBallotTests(unittest.TestCase):
    def test_latest_version_per_judge_wins(self) -> None:
        ballots = [
            two_team_ballot("j1", (75, 75), (70, 70), version=1),
            two_team_ballot("j1", (70, 70), (75, 75), version=2),
            two_team_ballot("j2", (70, 70), (75, 75), version=1),
        ]
        canonical = canonical_ballots(ballots)
        self.assertEqual(canonical["j1"].version, 2)
        self.assertEqual(canonical["j1"].team_points, {"A": 0, "B": 1})
        self.assertEqual(set(canonical), {"j1", "j2"})
