"""Сведение бюллетеней судей в канонический результат дебата.

Всё здесь работает с данными в памяти и не трогает БД: сервис бюллетеней
загружает бюллетени, вызывает ``aggregate_ballots`` и пишет результат.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal

from tabroom.core.errors import BadRequest, BallotDiscrepancy, InvalidConfiguration
from tabroom.models.draw import JudgeRole
from tabroom.models.tournament import BallotSetup
from tabroom.services.standings import round2

logger = logging.getLogger(__name__)

SCORE_EPSILON = Decimal("0.001")

Cell = tuple[int, int, int]


@dataclass
class BallotData:
    ballot_id: str
    judge_id: str
    version: int
    # (side, seq, speaker_position) -> (speaker_id, score)
    scores: dict[Cell, tuple[str, Decimal | None]] = field(default_factory=dict)
    team_points: dict[str, int] = field(default_factory=dict)


@dataclass
class DebateRepr:
    debate_id: str
    teams: dict[tuple[int, int], str]
    judges: dict[str, str]
    team_names: dict[str, str] = field(default_factory=dict)
    judge_names: dict[str, str] = field(default_factory=dict)
    speaker_names: dict[str, str] = field(default_factory=dict)

    @property
    def chair_id(self) -> str | None:
        for judge_id, role in self.judges.items():
            if role == JudgeRole.CHAIR.value:
                return judge_id
        return None

    @property
    def voting_judges(self) -> list[str]:
        return [judge_id for judge_id, role in self.judges.items() if role != JudgeRole.TRAINEE.value]


@dataclass
class AggregatedResult:
    team_points: dict[str, int]
    # (speaker_id, team_id, position, score)
    speaker_scores: list[tuple[str, str, int, Decimal]] = field(default_factory=list)


def canonical_ballots(ballots: list[BallotData]) -> dict[str, BallotData]:
    """Последняя версия бюллетеня от каждого судьи."""
    result: dict[str, BallotData] = {}
    for ballot in ballots:
        current = result.get(ballot.judge_id)
        if current is None or ballot.version > current.version:
            result[ballot.judge_id] = ballot
    return result


def missing_judges(debate: DebateRepr, canonical: dict[str, BallotData]) -> list[str]:
    return [judge_id for judge_id in debate.voting_judges if judge_id not in canonical]


def find_discrepancies(
    debate: DebateRepr,
    ballots: list[BallotData],
    position_name,
    compare_results: bool,
) -> list[str]:
    """Список расхождений между бюллетенями; пустой, если они изоморфны.

    ``position_name(side, seq, position)`` даёт название речи для сообщений.
    """
    problems: list[str] = []

    def judge(judge_id: str) -> str:
        return debate.judge_names.get(judge_id, judge_id)

    def speaker(speaker_id: str) -> str:
        return debate.speaker_names.get(speaker_id, speaker_id)

    def team(team_id: str) -> str:
        return debate.team_names.get(team_id, team_id)

    for index, first in enumerate(ballots):
        for second in ballots[index + 1:]:
            cells = sorted(set(first.scores) | set(second.scores))
            for cell in cells:
                name = position_name(*cell)
                left = first.scores.get(cell)
                right = second.scores.get(cell)
                if left is None or right is None:
                    problems.append(
                        f"the ballot from {judge(first.judge_id if left is None else second.judge_id)} "
                        f"does not record a speaker as {name}."
                    )
                    continue
                if left[0] != right[0]:
                    problems.append(
                        f"the ballot from {judge(first.judge_id)} has {speaker(left[0])} as {name}, whereas "
                        f"the ballot from {judge(second.judge_id)} has {speaker(right[0])} as {name}."
                    )
                elif compare_results and not _same_score(left[1], right[1]):
                    problems.append(
                        f"the ballot from {judge(first.judge_id)} gives the {name} {left[1]}, whereas "
                        f"the ballot from {judge(second.judge_id)} gives them {right[1]}."
                    )
            if compare_results:
                for team_id in sorted(set(first.team_points) | set(second.team_points)):
                    left_points = first.team_points.get(team_id)
                    right_points = second.team_points.get(team_id)
                    if left_points != right_points:
                        problems.append(
                            f"the ballot from {judge(first.judge_id)} gives {team(team_id)} {left_points} "
                            f"point(s), whereas the ballot from {judge(second.judge_id)} gives them "
                            f"{right_points} point(s)."
                        )
    return problems


def _same_score(left: Decimal | None, right: Decimal | None) -> bool:
    if left is None or right is None:
        return left is right
    return abs(left - right) <= SCORE_EPSILON


def _speaker_rows(debate: DebateRepr, ballot: BallotData) -> list[tuple[str, str, int, Decimal]]:
    rows = []
    for (side, seq, position), (speaker_id, score) in sorted(ballot.scores.items()):
        if score is not None:
            rows.append((speaker_id, debate.teams[(side, seq)], position, score))
    return rows


def _ballot_vote(ballot: BallotData) -> str | None:
    """Команда, за которую голосует бюллетень; None при ничьей."""
    if not ballot.team_points:
        return None
    best = max(ballot.team_points.values())
    leaders = [team_id for team_id, points in ballot.team_points.items() if points == best]
    return leaders[0] if len(leaders) == 1 else None


def aggregate_ballots(
    debate: DebateRepr,
    ballots: list[BallotData],
    setup: BallotSetup,
    is_elim: bool,
    requires_speaks: bool,
    position_name,
) -> AggregatedResult:
    """Сводит канонические бюллетени дебата в результат.

    Бросает ``BadRequest``, если не хватает бюллетеней, и ``BallotDiscrepancy``,
    если бюллетени не изоморфны.
    """
    canonical = canonical_ballots(ballots)
    missing = missing_judges(debate, canonical)
    if missing:
        names = ", ".join(debate.judge_names.get(judge_id, judge_id) for judge_id in missing)
        raise BadRequest(f"Ballots are missing from: {names}", missing)
    voting = [canonical[judge_id] for judge_id in debate.voting_judges]
    if not voting:
        raise BadRequest("The debate has no adjudicators with a vote")

    individual = setup == BallotSetup.INDIVIDUAL
    problems = find_discrepancies(debate, voting, position_name, compare_results=not individual)
    if problems:
        logger.info("Ballots for debate %s disagree (%s problem(s))", debate.debate_id, len(problems))
        raise BallotDiscrepancy(problems)

    team_ids = list(debate.teams.values())
    if not individual:
        reference = voting[0]
        if is_elim:
            points = {team_id: 1 if reference.team_points.get(team_id) == 1 else 0 for team_id in team_ids}
        else:
            points = {team_id: reference.team_points.get(team_id, 0) for team_id in team_ids}
        speakers = _speaker_rows(debate, reference) if requires_speaks else []
        return AggregatedResult(points, speakers)

    if len(team_ids) != 2:
        raise InvalidConfiguration("Invalid configuration: individual ballots need a two-team format")

    votes = Counter(vote for vote in (_ballot_vote(ballot) for ballot in voting) if vote is not None)
    ranked = votes.most_common()
    if ranked and (len(ranked) == 1 or ranked[0][1] > ranked[1][1]):
        winner = ranked[0][0]
    else:
        chair_id = debate.chair_id
        winner = _ballot_vote(canonical[chair_id]) if chair_id in canonical else None
        if winner is None:
            raise BallotDiscrepancy(["the panel is split and the chair's ballot does not pick a winner."])
    points = {team_id: 1 if team_id == winner else 0 for team_id in team_ids}

    speakers = []
    if requires_speaks:
        for cell in sorted(voting[0].scores):
            speaker_id = voting[0].scores[cell][0]
            cell_scores = [ballot.scores[cell][1] for ballot in voting if ballot.scores[cell][1] is not None]
            if cell_scores:
                average = round2(sum(cell_scores, Decimal(0)) / len(cell_scores))
                speakers.append((speaker_id, debate.teams[cell[:2]], cell[2], average))
    return AggregatedResult(points, speakers)
