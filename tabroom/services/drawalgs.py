"""Алгоритмы жеребьёвки команд: силовая (ЦЛП через PuLP) и случайная.

Функции здесь чистые: на вход данные о командах, на выход комнаты.
Запись в БД и тикеты находятся в ``tabroom.services.draws``.
"""

import logging
import random
from dataclasses import dataclass, field
from decimal import Decimal

import pulp

from tabroom.core.errors import DrawPanic, InvalidTeamCount
from tabroom.services.metrics import PullupMetric, TeamMetricKind, UnrankableTeamMetric
from tabroom.services.standings import TeamStandings

logger = logging.getLogger(__name__)

MIP_GAP = 0.012
POWER_PAIRING_WEIGHT = 1000
PERTURBATION = 0.1


@dataclass
class DrawInput:
    team_ids: list[str]
    teams_per_side: int
    points: dict[str, int]
    # history[team][p]: сколько раз команда уже стояла на позиции p (p = seq*2 + side).
    history: dict[str, list[int]] = field(default_factory=dict)
    pullup_metrics: list[PullupMetric] = field(default_factory=list)
    standings: TeamStandings | None = None
    elim: bool = False
    time_limit: float | None = None


@dataclass
class DrawnRoom:
    props: list[str]
    opps: list[str]
    bracket: int = 0
    pullups: set[str] = field(default_factory=set)

    def positions(self) -> list[tuple[str, int, int]]:
        """(team_id, side, seq) для всех команд комнаты."""
        result = [(team_id, 0, seq) for seq, team_id in enumerate(self.props)]
        result.extend((team_id, 1, seq) for seq, team_id in enumerate(self.opps))
        return result


def check_team_count(team_count: int, teams_per_side: int) -> None:
    if team_count == 0:
        raise InvalidTeamCount("Wrong number of teams: there are no teams!")
    per_room = 2 * teams_per_side
    if team_count % per_room != 0:
        raise InvalidTeamCount(
            f"Wrong number of teams: {team_count} teams cannot be split into rooms of {per_room}."
        )


def _pullup_key(draw_input: DrawInput, team_id: str) -> tuple:
    standings = draw_input.standings
    key: list[Decimal] = []
    for metric in draw_input.pullup_metrics:
        if metric == PullupMetric.RANDOM or standings is None:
            key.append(Decimal(0))
        elif metric == PullupMetric.LOWEST_RANK:
            key.append(Decimal(-standings.rank_of(team_id)))
        elif metric == PullupMetric.HIGHEST_RANK:
            key.append(Decimal(standings.rank_of(team_id)))
        elif metric == PullupMetric.FEWER_PREVIOUS_PULLUPS:
            key.append(standings.extra_metric(team_id, UnrankableTeamMetric.FEWER_PREVIOUS_PULLUPS.value))
        elif metric == PullupMetric.LOWEST_DS_RANK:
            key.append(-standings.extra_metric(team_id, UnrankableTeamMetric.DRAW_STRENGTH_BY_RANK.value))
        elif metric == PullupMetric.LOWEST_DS_SPEAKS:
            key.append(-standings.extra_metric(team_id, TeamMetricKind.AVG_TOTAL_SPEAKER_SCORE.value))
    return tuple(key)


def pullup_preference(draw_input: DrawInput) -> dict[str, int]:
    """Плотный ранг команды в очереди на подтяжку: 0 подтягивается первой."""
    keys = {team_id: _pullup_key(draw_input, team_id) for team_id in draw_input.team_ids}
    distinct = sorted(set(keys.values()))
    index = {key: position for position, key in enumerate(distinct)}
    return {team_id: index[key] for team_id, key in keys.items()}


def generate_power_draw(draw_input: DrawInput, rng: random.Random) -> list[DrawnRoom]:
    team_ids = list(draw_input.team_ids)
    check_team_count(len(team_ids), draw_input.teams_per_side)

    n_positions = 2 * draw_input.teams_per_side
    n_rooms = len(team_ids) // n_positions
    points = {team_id: 0 if draw_input.elim else draw_input.points.get(team_id, 0) for team_id in team_ids}
    min_points = min(points.values())
    max_points = max(points.values())
    brackets = list(range(min_points, max_points + 1))
    rooms = range(n_rooms)
    places = range(n_positions)

    problem = pulp.LpProblem("draw", pulp.LpMinimize)
    x = {
        (t, r, p): pulp.LpVariable(f"x_{t}_{r}_{p}", cat=pulp.LpBinary)
        for t in range(len(team_ids))
        for r in rooms
        for p in places
    }
    y = {(t, s): pulp.LpVariable(f"y_{t}_{s}", cat=pulp.LpBinary) for t in range(len(team_ids)) for s in brackets}
    b = {(r, s): pulp.LpVariable(f"b_{r}_{s}", cat=pulp.LpBinary) for r in rooms for s in brackets}
    z = {s: pulp.LpVariable(f"z_{s}", lowBound=0, cat=pulp.LpInteger) for s in brackets}
    e = {
        (t, r, s): pulp.LpVariable(f"e_{t}_{r}_{s}")
        for t in range(len(team_ids))
        for r in rooms
        for s in brackets
    }

    for t, team_id in enumerate(team_ids):
        problem += pulp.lpSum(x[t, r, p] for r in rooms for p in places) == 1
        problem += pulp.lpSum(y[t, s] for s in brackets) == 1
        # Команду нельзя опустить в более слабую корзину.
        for s in brackets:
            if s < points[team_id]:
                problem += y[t, s] == 0
    for r in rooms:
        for p in places:
            problem += pulp.lpSum(x[t, r, p] for t in range(len(team_ids))) == 1
        problem += pulp.lpSum(x[t, r, p] for t in range(len(team_ids)) for p in places) == n_positions
    for s in brackets:
        problem += z[s] == pulp.lpSum(b[r, s] for r in rooms)
        problem += n_positions * z[s] == pulp.lpSum(y[t, s] for t in range(len(team_ids)))
    # e = 1 - |y - b|: команда корзины s сидит только в комнате корзины s.
    for t in range(len(team_ids)):
        for r in rooms:
            in_room = pulp.lpSum(x[t, r, p] for p in places)
            for s in brackets:
                slack = e[t, r, s]
                problem += slack <= 1 - (y[t, s] - b[r, s])
                problem += slack <= 1 + (y[t, s] - b[r, s])
                problem += slack >= y[t, s] + b[r, s] - 1
                problem += slack >= 1 - (y[t, s] + b[r, s])
                problem += in_room <= slack

    power_cost = []
    if not draw_input.elim:
        preference = pullup_preference(draw_input)
        distance_weight = max(preference.values(), default=0) + 2
        for t, team_id in enumerate(team_ids):
            for s in brackets:
                if s < points[team_id]:
                    continue
                penalty = rng.random() * PERTURBATION
                if s > points[team_id]:
                    penalty += distance_weight * (s - points[team_id]) + preference[team_id]
                power_cost.append(penalty * y[t, s])

    position_cost = []
    for t, team_id in enumerate(team_ids):
        history = draw_input.history.get(team_id) or [0] * n_positions
        for r in rooms:
            for p in places:
                weight = (history[p] if p < len(history) else 0) + rng.random() * PERTURBATION
                position_cost.append(weight * x[t, r, p])

    problem += POWER_PAIRING_WEIGHT * pulp.lpSum(power_cost) + pulp.lpSum(position_cost)

    solver = pulp.PULP_CBC_CMD(msg=False, gapRel=MIP_GAP, timeLimit=draw_input.time_limit)
    try:
        problem.solve(solver)
    except pulp.PulpSolverError as exc:
        logger.exception("Draw solver failed for %s teams", len(team_ids))
        raise DrawPanic("Internal application error.") from exc
    if problem.sol_status not in (pulp.LpSolutionOptimal, pulp.LpSolutionIntegerFeasible):
        logger.error("Draw solver returned status %s", pulp.LpStatus.get(problem.status, problem.status))
        raise DrawPanic("Internal application error.")

    result: list[DrawnRoom] = []
    for r in rooms:
        seats: list[str | None] = [None] * n_positions
        for t, team_id in enumerate(team_ids):
            for p in places:
                if (x[t, r, p].value() or 0) > 0.5:
                    seats[p] = team_id
        if any(seat is None for seat in seats):
            raise DrawPanic("Internal application error.")
        bracket = next((s for s in brackets if (b[r, s].value() or 0) > 0.5), max(points[t] for t in seats))
        result.append(
            DrawnRoom(
                props=[seats[p] for p in places if p % 2 == 0],
                opps=[seats[p] for p in places if p % 2 == 1],
                bracket=bracket,
                pullups={team_id for team_id in seats if points[team_id] < bracket},
            )
        )
    result.sort(key=lambda room: room.bracket, reverse=True)
    return result


def generate_random_draw(team_ids: list[str], teams_per_side: int, rng: random.Random) -> list[DrawnRoom]:
    check_team_count(len(team_ids), teams_per_side)
    shuffled = list(team_ids)
    rng.shuffle(shuffled)
    per_room = 2 * teams_per_side
    rooms = []
    for start in range(0, len(shuffled), per_room):
        seats = shuffled[start:start + per_room]
        rooms.append(DrawnRoom(props=seats[0::2], opps=seats[1::2]))
    return rooms
