"""Приём бюллетеней по приватной ссылке и запись результатов дебатов."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.errors import BadRequest, BallotDiscrepancy, BallotVersionConflict, NotFound
from tabroom.models.ballot import Ballot, BallotScore, BallotTeamRank
from tabroom.models.draw import Debate, DebateJudge, DebateSpeakerResult, DebateStatus, DebateTeamResult, JudgeRole
from tabroom.models.participants import Judge, Speaker, Team
from tabroom.models.round import DrawStatus, Motion, Round, RoundKind
from tabroom.models.tournament import BallotSetup, Tournament
from tabroom.schemas import BallotSubmission
from tabroom.services.aggregation import AggregatedResult, BallotData, DebateRepr, aggregate_ballots
from tabroom.services.format import (
    ballot_setup,
    check_reply_score,
    check_substantive_score,
    format_total_points,
    positions,
    round_requires_speaks,
    speaker_position_name,
    speakers_per_team,
)
from tabroom.services.queries import current_draw, debate_judges, debate_teams, get_judge_by_private_url, is_final_round
from tabroom.services.snapshots import take_snapshot

logger = logging.getLogger(__name__)


@dataclass
class SubmitOutcome:
    ballot: Ballot
    debate_status: str
    problems: list[str] = field(default_factory=list)


async def build_debate_repr(db: AsyncSession, debate: Debate) -> DebateRepr:
    teams = await debate_teams(db, debate.id)
    judges = await debate_judges(db, debate.id)
    team_rows = (await db.scalars(select(Team).where(Team.id.in_([row.team_id for row in teams])))).all()
    judge_rows = (await db.scalars(select(Judge).where(Judge.id.in_([row.judge_id for row in judges])))).all()
    speaker_rows = (
        await db.scalars(select(Speaker).where(Speaker.team_id.in_([row.team_id for row in teams])))
    ).all()
    return DebateRepr(
        debate_id=debate.id,
        teams={(row.side, row.seq): row.team_id for row in teams},
        judges={row.judge_id: row.role for row in judges},
        team_names={team.id: team.name for team in team_rows},
        judge_names={judge.id: judge.name for judge in judge_rows},
        speaker_names={speaker.id: speaker.name for speaker in speaker_rows},
    )


async def load_ballots(db: AsyncSession, debate: DebateRepr) -> list[BallotData]:
    positions_of = {team_id: position for position, team_id in debate.teams.items()}
    ballots = (await db.scalars(select(Ballot).where(Ballot.debate_id == debate.debate_id))).all()
    if not ballots:
        return []
    ids = [ballot.id for ballot in ballots]
    scores = (await db.scalars(select(BallotScore).where(BallotScore.ballot_id.in_(ids)))).all()
    ranks = (await db.scalars(select(BallotTeamRank).where(BallotTeamRank.ballot_id.in_(ids)))).all()

    result = {
        ballot.id: BallotData(ballot_id=ballot.id, judge_id=ballot.judge_id, version=ballot.version)
        for ballot in ballots
    }
    for row in scores:
        side, seq = positions_of[row.team_id]
        score = Decimal(str(row.score)) if row.score is not None else None
        result[row.ballot_id].scores[(side, seq, row.speaker_position)] = (row.speaker_id, score)
    for row in ranks:
        result[row.ballot_id].team_points[row.team_id] = row.points
    return list(result.values())


async def write_results(db: AsyncSession, debate: Debate, result: AggregatedResult) -> None:
    """Заменяет результаты дебата новыми."""
    await db.execute(delete(DebateTeamResult).where(DebateTeamResult.debate_id == debate.id))
    await db.execute(delete(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == debate.id))
    for team_id, points in result.team_points.items():
        db.add(DebateTeamResult(tournament_id=debate.tournament_id, debate_id=debate.id, team_id=team_id, points=points))
    for speaker_id, team_id, position, score in result.speaker_scores:
        db.add(
            DebateSpeakerResult(
                tournament_id=debate.tournament_id,
                debate_id=debate.id,
                speaker_id=speaker_id,
                team_id=team_id,
                position=position,
                score=float(score),
            )
        )
    await db.flush()


async def aggregate_debate(db: AsyncSession, tournament: Tournament, round_: Round, debate: Debate) -> AggregatedResult:
    """Сводит бюллетени дебата и записывает результат в текущую транзакцию."""
    repr_ = await build_debate_repr(db, debate)
    ballots = await load_ballots(db, repr_)

    def position_name(side: int, seq: int, position: int) -> str:
        return speaker_position_name(tournament, side, seq, position)

    result = aggregate_ballots(
        repr_,
        ballots,
        ballot_setup(tournament, round_),
        is_elim=round_.kind == RoundKind.ELIM.value,
        requires_speaks=round_requires_speaks(tournament, round_),
        position_name=position_name,
    )
    await write_results(db, debate, result)
    debate.status = DebateStatus.CONFIRMED.value
    return result


async def _judge_debate(db: AsyncSession, round_: Round, judge: Judge) -> Debate:
    draw = await current_draw(db, round_.id)
    if draw is None:
        raise NotFound("There is no draw for this round")
    debate = await db.scalar(
        select(Debate)
        .join(DebateJudge, DebateJudge.debate_id == Debate.id)
        .where(Debate.draw_id == draw.id, DebateJudge.judge_id == judge.id)
    )
    if debate is None:
        raise NotFound("You are not adjudicating a debate in this round")
    return debate


def _team_ranks_from_totals(totals: list[Decimal]) -> list[int]:
    return [sum(1 for other in totals if other < total) for total in totals]


async def _validate_speakers(
    db: AsyncSession, tournament: Tournament, team_id: str, entry_speakers: list
) -> list[tuple[str, Decimal]]:
    expected = speakers_per_team(tournament)
    if len(entry_speakers) != expected:
        raise BadRequest(f"Expected {expected} speakers per team, got {len(entry_speakers)}")
    members = set((await db.scalars(select(Speaker.id).where(Speaker.team_id == team_id))).all())
    rows = []
    substantive_ids = []
    for position, entry in enumerate(entry_speakers):
        if entry.speaker_id not in members:
            raise BadRequest("A speaker does not belong to the team they were entered for")
        if entry.score is None:
            raise BadRequest("Every speech needs a score")
        is_reply = tournament.reply_speakers and position == tournament.substantive_speakers
        if is_reply:
            if not check_reply_score(tournament, entry.score):
                raise BadRequest(f"Reply score {entry.score} is out of range")
            limit = tournament.max_substantive_speech_index_for_reply or tournament.substantive_speakers
            if tournament.reply_must_speak and entry.speaker_id not in substantive_ids[:limit]:
                raise BadRequest("The reply speaker must have given one of the earlier substantive speeches")
        else:
            if not check_substantive_score(tournament, entry.score):
                raise BadRequest(f"Score {entry.score} is not allowed for a substantive speech")
            if entry.speaker_id in substantive_ids:
                raise BadRequest("A speaker cannot give two substantive speeches")
            substantive_ids.append(entry.speaker_id)
        rows.append((entry.speaker_id, entry.score))
    return rows


async def submit_ballot(
    db: AsyncSession,
    tournament: Tournament,
    round_: Round,
    private_url: str,
    submission: BallotSubmission,
    editor_id: str | None = None,
) -> SubmitOutcome:
    """Сохраняет новую версию бюллетеня судьи и, если можно, сводит результат."""
    if round_.draw_status != DrawStatus.RELEASED_FULL.value:
        raise BadRequest("The draw for this round has not been released.")
    if round_.completed:
        raise BadRequest("This round is already completed.")
    judge = await get_judge_by_private_url(db, tournament.id, private_url)
    debate = await _judge_debate(db, round_, judge)

    motion = await db.get(Motion, submission.motion_id)
    if motion is None or motion.round_id != round_.id:
        raise BadRequest("The motion does not belong to this round.")

    seats = await debate_teams(db, debate.id)
    by_position = {(row.side, row.seq): row.team_id for row in seats}
    layout = positions(tournament.teams_per_side)
    if len(submission.teams) != len(layout):
        raise BadRequest(f"Expected {len(layout)} teams, got {len(submission.teams)}")

    requires_speaks = round_requires_speaks(tournament, round_)
    is_elim = round_.kind == RoundKind.ELIM.value
    speaker_rows: dict[str, list[tuple[str, Decimal]]] = {}
    for (side, seq), entry in zip(layout, submission.teams):
        team_id = by_position[(side, seq)]
        if requires_speaks:
            speaker_rows[team_id] = await _validate_speakers(db, tournament, team_id, entry.speakers)
        elif entry.speakers:
            raise BadRequest("Speaker scores are not recorded in this round")

    team_order = [by_position[position] for position in layout]
    if is_elim:
        points = [entry.points or 0 for entry in submission.teams]
        if any(value not in (0, 1) for value in points):
            raise BadRequest("Elimination ballots mark each team as advancing (1) or not (0)")
        advancing = format_total_points(tournament, round_, await is_final_round(db, round_))
        if sum(points) != advancing:
            raise BadRequest(f"Exactly {advancing} team(s) must advance from this debate")
    else:
        totals = [sum((score for _, score in speaker_rows[team_id]), Decimal(0)) for team_id in team_order]
        if ballot_setup(tournament, round_) == BallotSetup.CONSENSUS and len(set(totals)) != len(totals):
            raise BadRequest("Teams cannot have equal total scores")
        points = _team_ranks_from_totals(totals)

    prior = await db.scalar(
        select(func.max(Ballot.version)).where(Ballot.debate_id == debate.id, Ballot.judge_id == judge.id)
    )
    if submission.expected_version is not None and submission.expected_version != prior:
        raise BallotVersionConflict()

    ballot = Ballot(
        tournament_id=tournament.id,
        debate_id=debate.id,
        judge_id=judge.id,
        motion_id=motion.id,
        version=0 if prior is None else prior + 1,
        editor_id=editor_id,
    )
    db.add(ballot)
    await db.flush()
    for team_id, value in zip(team_order, points):
        db.add(BallotTeamRank(tournament_id=tournament.id, ballot_id=ballot.id, team_id=team_id, points=value))
    for team_id, rows in speaker_rows.items():
        for position, (speaker_id, score) in enumerate(rows):
            db.add(
                BallotScore(
                    tournament_id=tournament.id,
                    ballot_id=ballot.id,
                    team_id=team_id,
                    speaker_id=speaker_id,
                    speaker_position=position,
                    score=float(score),
                )
            )
    await db.flush()

    problems: list[str] = []
    judges = await debate_judges(db, debate.id)
    submitted = set(
        (await db.scalars(select(Ballot.judge_id).where(Ballot.debate_id == debate.id))).all()
    )
    if all(row.judge_id in submitted for row in judges if row.role != JudgeRole.TRAINEE.value):
        try:
            await aggregate_debate(db, tournament, round_, debate)
        except BallotDiscrepancy as exc:
            debate.status = DebateStatus.CONFLICT.value
            problems = exc.problems
    else:
        debate.status = DebateStatus.DRAFT.value

    await take_snapshot(db, tournament.id)
    await db.commit()
    logger.info("Ballot v%s stored for debate %s by judge %s", ballot.version, debate.id, judge.id)
    return SubmitOutcome(ballot=ballot, debate_status=debate.status, problems=problems)
