"""Раунды: создание, темы, доступность участников, завершение и публикация."""

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.errors import BadRequest, BallotDiscrepancy, NotFound
from tabroom.models.participants import Judge, Team
from tabroom.models.round import JudgeAvailability, Motion, Round, RoundKind, TeamAvailability
from tabroom.models.tournament import BreakCategory, Tournament
from tabroom.services.ballots import aggregate_debate
from tabroom.services.queries import current_draw, draw_debates
from tabroom.services.snapshots import take_snapshot

logger = logging.getLogger(__name__)


async def create_round(
    db: AsyncSession,
    tournament: Tournament,
    name: str,
    seq: int,
    kind: str = RoundKind.PRELIM.value,
    break_category_id: str | None = None,
) -> Round:
    """Создаёт раунд; все элиминации идут после всех отборочных."""
    try:
        kind = RoundKind(kind).value
    except ValueError as exc:
        raise BadRequest("Round kind must be prelim or elim") from exc
    if seq < 1:
        raise BadRequest("Round sequence numbers start at 1")
    if kind == RoundKind.ELIM.value:
        category = await db.get(BreakCategory, break_category_id) if break_category_id else None
        if category is None or category.tournament_id != tournament.id:
            raise BadRequest("Elimination rounds need a break category")
        max_prelim = await db.scalar(
            select(func.max(Round.seq)).where(Round.tournament_id == tournament.id, Round.kind == RoundKind.PRELIM.value)
        )
        if max_prelim is not None and seq <= max_prelim:
            raise BadRequest("Elimination rounds must come after every preliminary round")
    else:
        if break_category_id is not None:
            raise BadRequest("Preliminary rounds do not have a break category")
        min_elim = await db.scalar(
            select(func.min(Round.seq)).where(Round.tournament_id == tournament.id, Round.kind == RoundKind.ELIM.value)
        )
        if min_elim is not None and seq >= min_elim:
            raise BadRequest("Preliminary rounds must come before every elimination round")

    round_ = Round(
        tournament_id=tournament.id,
        name=name.strip(),
        seq=seq,
        kind=kind,
        break_category_id=break_category_id,
    )
    db.add(round_)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return round_


async def add_motion(db: AsyncSession, round_: Round, text: str, infoslide: str | None = None) -> Motion:
    if not text.strip():
        raise BadRequest("Motion text is required")
    motion = Motion(tournament_id=round_.tournament_id, round_id=round_.id, motion=text.strip(), infoslide=infoslide)
    db.add(motion)
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return motion


async def set_motions_published(db: AsyncSession, round_: Round, published: bool) -> Round:
    now = datetime.utcnow() if published else None
    round_.motions_released_at = now
    await db.execute(update(Motion).where(Motion.round_id == round_.id).values(published_at=now))
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return round_


async def _check_availability_editable(db: AsyncSession, round_: Round) -> None:
    if round_.completed:
        raise BadRequest("Availability cannot change for a completed round")
    earlier_incomplete = await db.scalar(
        select(Round.id).where(
            Round.tournament_id == round_.tournament_id,
            Round.seq < round_.seq,
            Round.completed.is_(False),
        ).limit(1)
    )
    if earlier_incomplete is not None:
        raise BadRequest("An earlier round has not been completed yet")


async def set_team_availability(db: AsyncSession, round_: Round, team_ids: list[str], available: bool) -> None:
    """Отмечает команды (не)доступными; в раундах с тем же seq доступность снимается."""
    await _check_availability_editable(db, round_)
    teams = (
        await db.scalars(select(Team.id).where(Team.tournament_id == round_.tournament_id, Team.id.in_(team_ids)))
    ).all()
    if len(set(teams)) != len(set(team_ids)):
        raise NotFound("Team not found")
    same_seq = (
        await db.scalars(
            select(Round.id).where(
                Round.tournament_id == round_.tournament_id,
                Round.seq == round_.seq,
                Round.id != round_.id,
            )
        )
    ).all()
    for team_id in set(team_ids):
        row = await db.scalar(
            select(TeamAvailability).where(TeamAvailability.round_id == round_.id, TeamAvailability.team_id == team_id)
        )
        if row is None:
            row = TeamAvailability(tournament_id=round_.tournament_id, round_id=round_.id, team_id=team_id)
            db.add(row)
        row.available = available
        if available and same_seq:
            await db.execute(
                update(TeamAvailability)
                .where(TeamAvailability.team_id == team_id, TeamAvailability.round_id.in_(same_seq))
                .values(available=False)
            )
    await take_snapshot(db, round_.tournament_id)
    await db.commit()


async def set_judge_availability(db: AsyncSession, round_: Round, judge_ids: list[str], available: bool) -> None:
    await _check_availability_editable(db, round_)
    judges = (
        await db.scalars(select(Judge.id).where(Judge.tournament_id == round_.tournament_id, Judge.id.in_(judge_ids)))
    ).all()
    if len(set(judges)) != len(set(judge_ids)):
        raise NotFound("Judge not found")
    for judge_id in set(judge_ids):
        row = await db.scalar(
            select(JudgeAvailability).where(JudgeAvailability.round_id == round_.id, JudgeAvailability.judge_id == judge_id)
        )
        if row is None:
            row = JudgeAvailability(tournament_id=round_.tournament_id, round_id=round_.id, judge_id=judge_id)
            db.add(row)
        row.available = available
    await take_snapshot(db, round_.tournament_id)
    await db.commit()


async def set_round_completed(db: AsyncSession, tournament: Tournament, round_: Round, completed: bool) -> Round:
    """Завершает раунд, если все дебаты имеют полный согласованный набор бюллетеней."""
    if completed:
        draw = await current_draw(db, round_.id)
        if draw is None:
            raise BadRequest("The round has no draw.")
        problems: list[str] = []
        for debate in await draw_debates(db, draw.id):
            try:
                await aggregate_debate(db, tournament, round_, debate)
            except BallotDiscrepancy as exc:
                problems.extend(f"Debate {debate.number}: {problem}" for problem in exc.problems)
            except BadRequest as exc:
                problems.append(f"Debate {debate.number}: {exc.message}")
        if problems:
            await db.rollback()
            raise BadRequest("The round cannot be completed yet.", problems)
        round_.completed = True
    else:
        round_.completed = False
        round_.results_published_at = None
    await take_snapshot(db, tournament.id)
    await db.commit()
    logger.info("Round %s marked %s", round_.id, "completed" if completed else "incomplete")
    return round_


async def set_results_published(db: AsyncSession, round_: Round, published: bool) -> Round:
    if published and not round_.completed:
        raise BadRequest("Cannot publish results for an incomplete round.")
    round_.results_published_at = datetime.utcnow() if published else None
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return round_
