"""Расчёт командных и спикерских таблиц по завершённым отборочным раундам.

Движок работает с данными в памяти (``StandingsInput``), загрузка из БД
находится в ``load_standings_input``.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.errors import InvalidConfiguration
from tabroom.models.ballot import Ballot, BallotTeamRank
from tabroom.models.draw import Debate, DebateJudge, DebateSpeakerResult, DebateTeam, DebateTeamResult, JudgeRole
from tabroom.models.participants import Speaker, Team
from tabroom.models.round import Round, RoundKind
from tabroom.models.tournament import BallotSetup, Tournament
from tabroom.services.queries import current_draw
from tabroom.services.metrics import (
    PullupMetric,
    RankableTeamMetric,
    SpeakerMetric,
    TeamMetricKind,
    UnrankableTeamMetric,
    parse_pullup_metrics,
    parse_speaker_metrics,
    parse_team_metrics,
)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal(0)


def round2(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)


@dataclass
class SpeakerScoreRecord:
    speaker_id: str
    team_id: str
    position: int
    score: Decimal


@dataclass
class DebateRecord:
    debate_id: str
    round_seq: int
    teams: dict[str, tuple[int, int]]
    points: dict[str, int]
    pullups: set[str] = field(default_factory=set)
    speaker_scores: list[SpeakerScoreRecord] = field(default_factory=list)
    ballots_for: dict[str, int] = field(default_factory=dict)


@dataclass
class StandingsInput:
    team_ids: list[str]
    debates: list[DebateRecord]
    speaker_teams: dict[str, str] = field(default_factory=dict)
    # Число завершённых отборочных раундов; по умолчанию считается по дебатам.
    round_count: int | None = None

    def completed_rounds(self) -> int:
        if self.round_count is not None:
            return self.round_count
        return len({debate.round_seq for debate in self.debates})


@dataclass
class StandingsConfig:
    team_metrics: list[RankableTeamMetric]
    pullup_metrics: list[PullupMetric] = field(default_factory=list)
    speaker_metrics: list[SpeakerMetric] = field(default_factory=list)
    individual_ballots: bool = False
    exclude_speakers_after: int = -1
    substantive_speakers: int = 2

    @classmethod
    def from_tournament(cls, tournament: Tournament) -> "StandingsConfig":
        return cls(
            team_metrics=parse_team_metrics(tournament.team_standings_metrics),
            pullup_metrics=parse_pullup_metrics(tournament.pullup_metrics),
            speaker_metrics=parse_speaker_metrics(tournament.speaker_standings_metrics),
            individual_ballots=tournament.pool_ballot_setup == BallotSetup.INDIVIDUAL.value,
            exclude_speakers_after=tournament.exclude_from_speaker_standings_after,
            substantive_speakers=tournament.substantive_speakers,
        )


@dataclass
class TeamStandings:
    metrics: list[RankableTeamMetric]
    values: dict[str, list[Decimal]]
    points: dict[str, int]
    extra: dict[str, dict[str, Decimal]]
    bands: list[list[str]]
    ranks: dict[str, int]

    def rank_of(self, team_id: str) -> int:
        return self.ranks.get(team_id, len(self.ranks) + 1)

    def extra_metric(self, team_id: str, name: str) -> Decimal:
        return self.extra.get(team_id, {}).get(name, ZERO)


@dataclass
class SpeakerStanding:
    speaker_id: str
    team_id: str
    values: list[Decimal]
    rank: int


def _excluded_speakers(data: StandingsInput, cutoff: int) -> set[str]:
    """Спикеры, пропустившие больше ``cutoff`` дебатов своей команды."""
    if cutoff < 0:
        return set()
    team_debates: dict[str, set[str]] = defaultdict(set)
    for debate in data.debates:
        for team_id in debate.teams:
            team_debates[team_id].add(debate.debate_id)
    spoke_in: dict[str, set[str]] = defaultdict(set)
    for debate in data.debates:
        for record in debate.speaker_scores:
            spoke_in[record.speaker_id].add(debate.debate_id)
    excluded = set()
    for speaker_id, team_id in data.speaker_teams.items():
        missed = len(team_debates.get(team_id, set()) - spoke_in.get(speaker_id, set()))
        if missed > cutoff:
            excluded.add(speaker_id)
    return excluded


def _opponents(data: StandingsInput) -> dict[str, list[str]]:
    result: dict[str, list[str]] = defaultdict(list)
    for debate in data.debates:
        for team_id in debate.teams:
            result[team_id].extend(other for other in debate.teams if other != team_id)
    return result


def compute_team_standings(config: StandingsConfig, data: StandingsInput) -> TeamStandings:
    """Считает метрики в заданном порядке и группирует команды в полосы."""
    team_ids = list(data.team_ids)
    round_count = data.completed_rounds()
    points: dict[str, int] = defaultdict(int)
    for debate in data.debates:
        for team_id in debate.teams:
            points[team_id] += debate.points.get(team_id, 0)

    excluded = _excluded_speakers(data, config.exclude_speakers_after)
    opponents = _opponents(data)

    def total_speaks() -> dict[str, Decimal]:
        totals = {team_id: ZERO for team_id in team_ids}
        for debate in data.debates:
            for record in debate.speaker_scores:
                if record.speaker_id not in excluded and record.team_id in totals:
                    totals[record.team_id] += record.score
        return totals

    def avg_speaks(totals: dict[str, Decimal]) -> dict[str, Decimal]:
        return {
            team_id: round2(totals[team_id] / round_count) if round_count else ZERO
            for team_id in team_ids
        }

    computed: dict[TeamMetricKind, dict[str, Decimal]] = {}
    columns: list[dict[str, Decimal]] = []
    for metric in config.team_metrics:
        kind = metric.kind
        if kind == TeamMetricKind.WINS:
            column = {team_id: Decimal(points[team_id]) for team_id in team_ids}
        elif kind == TeamMetricKind.BALLOTS:
            if not config.individual_ballots:
                raise InvalidConfiguration(
                    "Invalid configuration: the ballots metric needs individual ballots in preliminary rounds"
                )
            column = {team_id: ZERO for team_id in team_ids}
            for debate in data.debates:
                for team_id, count in debate.ballots_for.items():
                    if team_id in column:
                        column[team_id] += count
        elif kind == TeamMetricKind.N_TIMES_ACHIEVED:
            column = {team_id: ZERO for team_id in team_ids}
            for debate in data.debates:
                for team_id in debate.teams:
                    if debate.points.get(team_id, 0) == metric.k and team_id in column:
                        column[team_id] += 1
        elif kind == TeamMetricKind.TOTAL_SPEAKER_SCORE:
            column = total_speaks()
        elif kind == TeamMetricKind.AVG_TOTAL_SPEAKER_SCORE:
            column = avg_speaks(computed.get(TeamMetricKind.TOTAL_SPEAKER_SCORE) or total_speaks())
        elif kind in (TeamMetricKind.DRAW_STRENGTH_BY_WINS, TeamMetricKind.DRAW_STRENGTH_BY_SPEAKS):
            source_kind = (
                TeamMetricKind.WINS if kind == TeamMetricKind.DRAW_STRENGTH_BY_WINS
                else TeamMetricKind.AVG_TOTAL_SPEAKER_SCORE
            )
            source = computed.get(source_kind)
            if source is None:
                raise InvalidConfiguration(
                    f"Invalid configuration: {kind.value} must come after {source_kind.value}"
                )
            column = {
                team_id: sum((source.get(other, ZERO) for other in opponents.get(team_id, [])), ZERO)
                for team_id in team_ids
            }
        else:
            raise InvalidConfiguration(f"Invalid configuration: unsupported metric {metric}")
        computed[kind] = column
        columns.append(column)

    values = {team_id: [column[team_id] for column in columns] for team_id in team_ids}
    ordered = sorted(team_ids, key=lambda team_id: values[team_id], reverse=True)
    bands: list[list[str]] = []
    ranks: dict[str, int] = {}
    for team_id in ordered:
        if bands and values[bands[-1][0]] == values[team_id]:
            bands[-1].append(team_id)
        else:
            bands.append([team_id])
        ranks[team_id] = sum(len(band) for band in bands[:-1]) + 1

    extra: dict[str, dict[str, Decimal]] = {team_id: {} for team_id in team_ids}
    wanted = set(config.pullup_metrics)
    if PullupMetric.LOWEST_DS_RANK in wanted:
        for team_id in team_ids:
            extra[team_id][UnrankableTeamMetric.DRAW_STRENGTH_BY_RANK.value] = Decimal(
                sum(ranks.get(other, len(team_ids)) for other in opponents.get(team_id, []))
            )
    if PullupMetric.FEWER_PREVIOUS_PULLUPS in wanted:
        pullups: dict[str, int] = defaultdict(int)
        for debate in data.debates:
            for team_id in debate.pullups:
                pullups[team_id] += 1
        for team_id in team_ids:
            extra[team_id][UnrankableTeamMetric.FEWER_PREVIOUS_PULLUPS.value] = Decimal(pullups[team_id])
    if PullupMetric.LOWEST_DS_SPEAKS in wanted:
        averages = computed.get(TeamMetricKind.AVG_TOTAL_SPEAKER_SCORE) or avg_speaks(
            computed.get(TeamMetricKind.TOTAL_SPEAKER_SCORE) or total_speaks()
        )
        for team_id in team_ids:
            extra[team_id][TeamMetricKind.AVG_TOTAL_SPEAKER_SCORE.value] = averages[team_id]

    return TeamStandings(
        metrics=list(config.team_metrics),
        values=values,
        points={team_id: points[team_id] for team_id in team_ids},
        extra=extra,
        bands=bands,
        ranks=ranks,
    )


def compute_speaker_standings(config: StandingsConfig, data: StandingsInput) -> list[SpeakerStanding]:
    excluded = _excluded_speakers(data, config.exclude_speakers_after)
    scores: dict[str, list[Decimal]] = defaultdict(list)
    for debate in data.debates:
        for record in debate.speaker_scores:
            # Ответные речи в спикерскую таблицу не входят.
            if record.position < config.substantive_speakers:
                scores[record.speaker_id].append(record.score)

    rows: list[tuple[str, list[Decimal], tuple]] = []
    for speaker_id, team_id in data.speaker_teams.items():
        if speaker_id in excluded:
            continue
        speeches = scores.get(speaker_id, [])
        values: list[Decimal] = []
        key: list[Decimal] = []
        for metric in config.speaker_metrics:
            if metric == SpeakerMetric.TOTAL:
                value = sum(speeches, ZERO)
            elif metric == SpeakerMetric.AVG:
                value = round2(sum(speeches, ZERO) / len(speeches)) if speeches else ZERO
            else:
                value = round2(Decimal(str(statistics.pstdev(speeches)))) if len(speeches) > 1 else ZERO
            values.append(value)
            key.append(-value if metric == SpeakerMetric.STDDEV else value)
        rows.append((speaker_id, values, tuple(key)))

    rows.sort(key=lambda row: row[2], reverse=True)
    result: list[SpeakerStanding] = []
    for index, (speaker_id, values, key) in enumerate(rows):
        if result and rows[index - 1][2] == key:
            rank = result[-1].rank
        else:
            rank = index + 1
        result.append(SpeakerStanding(speaker_id, data.speaker_teams[speaker_id], values, rank))
    return result


async def load_standings_input(db: AsyncSession, tournament: Tournament, before_seq: int | None = None) -> StandingsInput:
    """Собирает результаты завершённых отборочных раундов турнира."""
    teams = (
        await db.scalars(select(Team).where(Team.tournament_id == tournament.id).order_by(Team.number))
    ).all()
    speakers = (await db.scalars(select(Speaker).where(Speaker.tournament_id == tournament.id))).all()
    query = select(Round).where(
        Round.tournament_id == tournament.id,
        Round.kind == RoundKind.PRELIM.value,
        Round.completed.is_(True),
    )
    if before_seq is not None:
        query = query.where(Round.seq < before_seq)
    rounds = (await db.scalars(query.order_by(Round.seq))).all()

    records: list[DebateRecord] = []
    drawn_rounds = 0
    for round_ in rounds:
        draw = await current_draw(db, round_.id)
        if draw is None:
            continue
        drawn_rounds += 1
        debates = (await db.scalars(select(Debate).where(Debate.draw_id == draw.id))).all()
        for debate in debates:
            records.append(await _debate_record(db, debate, round_.seq))

    return StandingsInput(
        team_ids=[team.id for team in teams],
        debates=records,
        speaker_teams={speaker.id: speaker.team_id for speaker in speakers},
        round_count=drawn_rounds,
    )


async def _debate_record(db: AsyncSession, debate: Debate, round_seq: int) -> DebateRecord:
    debate_teams = (await db.scalars(select(DebateTeam).where(DebateTeam.debate_id == debate.id))).all()
    team_results = (
        await db.scalars(select(DebateTeamResult).where(DebateTeamResult.debate_id == debate.id))
    ).all()
    speaker_results = (
        await db.scalars(select(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == debate.id))
    ).all()

    # Голоса за команду считаются по каноническим бюллетеням не-стажёров.
    voting_judges = set(
        (
            await db.scalars(
                select(DebateJudge.judge_id).where(
                    DebateJudge.debate_id == debate.id,
                    DebateJudge.role != JudgeRole.TRAINEE.value,
                )
            )
        ).all()
    )
    ballots = (await db.scalars(select(Ballot).where(Ballot.debate_id == debate.id))).all()
    canonical: dict[str, Ballot] = {}
    for ballot in ballots:
        if ballot.judge_id in voting_judges and (
            ballot.judge_id not in canonical or ballot.version > canonical[ballot.judge_id].version
        ):
            canonical[ballot.judge_id] = ballot
    ballots_for: dict[str, int] = defaultdict(int)
    if canonical:
        ranks = (
            await db.scalars(
                select(BallotTeamRank).where(BallotTeamRank.ballot_id.in_([b.id for b in canonical.values()]))
            )
        ).all()
        for rank in ranks:
            ballots_for[rank.team_id] += rank.points

    return DebateRecord(
        debate_id=debate.id,
        round_seq=round_seq,
        teams={row.team_id: (row.side, row.seq) for row in debate_teams},
        points={row.team_id: row.points for row in team_results},
        pullups={row.team_id for row in debate_teams if row.pullup},
        speaker_scores=[
            SpeakerScoreRecord(row.speaker_id, row.team_id, row.position, Decimal(str(row.score)))
            for row in speaker_results
        ],
        ballots_for=dict(ballots_for),
    )
