"""Жизненный цикл жеребьёвки: тикеты, генерация, фиксация и публикация."""

import asyncio
import logging
import random
from collections import defaultdict
from concurrent.futures import Executor
from datetime import datetime
from functools import partial

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabroom.core.config import settings
from tabroom.core.errors import (
    AlreadyInProgress,
    BadRequest,
    DrawAlreadyExists,
    NotFound,
    StaleAvailability,
    TicketExpired,
)
from tabroom.models.ballot import Ballot, BallotScore, BallotTeamRank
from tabroom.models.draw import (
    Debate,
    DebateJudge,
    DebateSpeakerResult,
    DebateTeam,
    DebateTeamResult,
    Draw,
    JudgeRole,
)
from tabroom.models.participants import Judge, Team
from tabroom.models.round import DrawStatus, Round, RoundKind, RoundTicket
from tabroom.models.tournament import Room, Tournament
from tabroom.schemas import JudgeSlot
from tabroom.services.drawalgs import DrawInput, DrawnRoom, generate_power_draw, generate_random_draw
from tabroom.services.format import position_index
from tabroom.services.metrics import parse_pullup_metrics
from tabroom.services.queries import (
    available_team_ids,
    current_draw,
    debate_judges,
    debate_teams,
    draw_debates,
    get_round,
    get_tournament,
    max_draw_version,
)
from tabroom.services.snapshots import take_snapshot
from tabroom.services.standings import StandingsConfig, compute_team_standings, load_standings_input

logger = logging.getLogger(__name__)

DRAW_TICKET = "draw"
DRAW_METHODS = ("power", "random")


async def acquire_ticket(db: AsyncSession, round_: Round, force: bool = False) -> RoundTicket:
    """Берёт тикет на жеребьёвку раунда; с ``force`` вытесняет текущий."""
    await db.execute(
        delete(RoundTicket).where(
            RoundTicket.round_id == round_.id,
            RoundTicket.kind == DRAW_TICKET,
            RoundTicket.released.is_(True),
        )
    )
    max_seq = await db.scalar(
        select(func.max(RoundTicket.seq)).where(
            RoundTicket.round_id == round_.id,
            RoundTicket.kind == DRAW_TICKET,
            RoundTicket.released.is_(False),
        )
    )
    if max_seq is not None and not force:
        await db.commit()
        raise AlreadyInProgress()
    if max_seq is not None:
        # Старые держатели увидят вытеснение при фиксации.
        await db.execute(
            update(RoundTicket)
            .where(RoundTicket.round_id == round_.id, RoundTicket.kind == DRAW_TICKET, RoundTicket.released.is_(False))
            .values(released=True, error="Preempted by a forced draw.")
        )
        logger.info("Draw ticket %s for round %s preempted", max_seq, round_.id)
    ticket = RoundTicket(round_id=round_.id, seq=0 if max_seq is None else max_seq + 1, kind=DRAW_TICKET)
    db.add(ticket)
    await db.commit()
    logger.info("Draw ticket %s acquired for round %s", ticket.seq, round_.id)
    return ticket


async def release_ticket(db: AsyncSession, ticket_id: str, error: str | None = None) -> None:
    ticket = await db.get(RoundTicket, ticket_id)
    if ticket is None:
        return
    ticket.released = True
    ticket.error = error
    await db.commit()
    logger.info("Draw ticket %s for round %s released", ticket.seq, ticket.round_id)


async def _ensure_ticket_active(db: AsyncSession, ticket_id: str) -> RoundTicket:
    ticket = await db.get(RoundTicket, ticket_id)
    if ticket is None or ticket.released:
        raise TicketExpired()
    newer = await db.scalar(
        select(RoundTicket.id).where(
            RoundTicket.round_id == ticket.round_id,
            RoundTicket.kind == ticket.kind,
            RoundTicket.seq > ticket.seq,
        ).limit(1)
    )
    if newer is not None:
        raise TicketExpired()
    return ticket


async def _previous_elim_round(db: AsyncSession, round_: Round) -> Round | None:
    return await db.scalar(
        select(Round)
        .where(
            Round.tournament_id == round_.tournament_id,
            Round.kind == RoundKind.ELIM.value,
            Round.break_category_id == round_.break_category_id,
            Round.seq < round_.seq,
        )
        .order_by(Round.seq.desc())
        .limit(1)
    )


async def draw_team_ids(db: AsyncSession, round_: Round) -> tuple[set[str], bool]:
    """Команды для жеребьёвки и признак того, что они взяты из доступности."""
    if round_.kind == RoundKind.PRELIM.value:
        return await available_team_ids(db, round_.id), True
    previous = await _previous_elim_round(db, round_)
    if previous is None:
        return await available_team_ids(db, round_.id), True
    if not previous.completed:
        raise BadRequest("The previous elimination round has not been completed.")
    draw = await current_draw(db, previous.id)
    if draw is None:
        return set(), False
    advancing = await db.scalars(
        select(DebateTeamResult.team_id)
        .join(Debate, Debate.id == DebateTeamResult.debate_id)
        .where(Debate.draw_id == draw.id, DebateTeamResult.points == 1)
    )
    return set(advancing.all()), False


async def position_history(db: AsyncSession, round_: Round, team_ids: set[str], per_room: int) -> dict[str, list[int]]:
    history = {team_id: [0] * per_room for team_id in team_ids}
    earlier = (
        await db.scalars(
            select(Round).where(Round.tournament_id == round_.tournament_id, Round.seq < round_.seq)
        )
    ).all()
    for other in earlier:
        draw = await current_draw(db, other.id)
        if draw is None:
            continue
        rows = await db.scalars(
            select(DebateTeam).join(Debate, Debate.id == DebateTeam.debate_id).where(Debate.draw_id == draw.id)
        )
        for row in rows.all():
            index = position_index(row.side, row.seq)
            if row.team_id in history and index < per_room:
                history[row.team_id][index] += 1
    return history


async def prepare_draw_input(
    db: AsyncSession, tournament: Tournament, round_: Round, executor: Executor | None = None
) -> tuple[DrawInput, bool]:
    team_ids, from_availability = await draw_team_ids(db, round_)
    ordered = [
        team.id
        for team in (
            await db.scalars(select(Team).where(Team.id.in_(team_ids)).order_by(Team.number))
        ).all()
    ]
    config = StandingsConfig.from_tournament(tournament)
    data = await load_standings_input(db, tournament, before_seq=round_.seq)
    loop = asyncio.get_running_loop()
    standings = await loop.run_in_executor(executor, compute_team_standings, config, data)
    per_room = 2 * tournament.teams_per_side
    draw_input = DrawInput(
        team_ids=ordered,
        teams_per_side=tournament.teams_per_side,
        points={team_id: standings.points.get(team_id, 0) for team_id in ordered},
        history=await position_history(db, round_, set(ordered), per_room),
        pullup_metrics=parse_pullup_metrics(tournament.pullup_metrics),
        standings=standings,
        elim=round_.kind == RoundKind.ELIM.value,
        time_limit=settings.draw_solver_time_limit,
    )
    return draw_input, from_availability


async def _delete_round_draws(db: AsyncSession, round_id: str) -> None:
    debate_ids = select(Debate.id).where(Debate.round_id == round_id)
    ballot_ids = select(Ballot.id).where(Ballot.debate_id.in_(debate_ids))
    await db.execute(delete(BallotScore).where(BallotScore.ballot_id.in_(ballot_ids)))
    await db.execute(delete(BallotTeamRank).where(BallotTeamRank.ballot_id.in_(ballot_ids)))
    await db.execute(delete(Ballot).where(Ballot.debate_id.in_(debate_ids)))
    await db.execute(delete(DebateSpeakerResult).where(DebateSpeakerResult.debate_id.in_(debate_ids)))
    await db.execute(delete(DebateTeamResult).where(DebateTeamResult.debate_id.in_(debate_ids)))
    await db.execute(delete(DebateJudge).where(DebateJudge.debate_id.in_(debate_ids)))
    await db.execute(delete(DebateTeam).where(DebateTeam.debate_id.in_(debate_ids)))
    await db.execute(delete(Debate).where(Debate.round_id == round_id))
    await db.execute(delete(Draw).where(Draw.round_id == round_id))


async def commit_draw(
    db: AsyncSession,
    round_: Round,
    ticket_id: str,
    rooms: list[DrawnRoom],
    force: bool,
    check_availability: bool = True,
) -> Draw:
    """Записывает жеребьёвку, если тикет вызывающего всё ещё активен."""
    ticket = await _ensure_ticket_active(db, ticket_id)

    drawn = {team_id for room in rooms for team_id in room.props + room.opps}
    if check_availability:
        revoked = drawn - await available_team_ids(db, round_.id)
        if revoked:
            raise StaleAvailability(
                "Team availability changed while the draw was being generated.", sorted(revoked)
            )

    previous_version = await max_draw_version(db, round_.id)
    if previous_version is not None:
        if not force:
            raise DrawAlreadyExists()
        await _delete_round_draws(db, round_.id)

    draw = Draw(
        tournament_id=round_.tournament_id,
        round_id=round_.id,
        version=0 if previous_version is None else previous_version + 1,
    )
    db.add(draw)
    await db.flush()
    for number, room in enumerate(rooms, start=1):
        debate = Debate(
            tournament_id=round_.tournament_id,
            draw_id=draw.id,
            round_id=round_.id,
            number=number,
            bracket=room.bracket,
        )
        db.add(debate)
        await db.flush()
        for team_id, side, seq in room.positions():
            db.add(
                DebateTeam(
                    tournament_id=round_.tournament_id,
                    debate_id=debate.id,
                    team_id=team_id,
                    side=side,
                    seq=seq,
                    pullup=team_id in room.pullups,
                )
            )
    round_.draw_status = DrawStatus.DRAFT.value
    round_.draw_released_at = None
    ticket.released = True
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    logger.info("Draw v%s committed for round %s (%s rooms)", draw.version, round_.id, len(rooms))
    return draw


async def run_draw_job(
    session_factory: async_sessionmaker,
    executor: Executor | None,
    tournament_id: str,
    round_id: str,
    ticket_id: str,
    force: bool = False,
    method: str = "power",
    seed: int | None = None,
) -> str:
    """Генерирует и фиксирует жеребьёвку в собственной сессии; возвращает id жеребьёвки."""
    loop = asyncio.get_running_loop()
    try:
        async with session_factory() as db:
            tournament = await get_tournament(db, tournament_id)
            round_ = await get_round(db, tournament_id, round_id)
            if not force and await current_draw(db, round_.id) is not None:
                raise DrawAlreadyExists()
            draw_input, from_availability = await prepare_draw_input(db, tournament, round_, executor)
            rng = random.Random(seed)
            if method == "random":
                job = partial(generate_random_draw, draw_input.team_ids, draw_input.teams_per_side, rng)
            else:
                job = partial(generate_power_draw, draw_input, rng)
            rooms = await loop.run_in_executor(executor, job)
            draw = await commit_draw(db, round_, ticket_id, rooms, force, check_availability=from_availability)
            return draw.id
    except Exception as exc:
        async with session_factory() as db:
            await release_ticket(db, ticket_id, error=getattr(exc, "message", None) or str(exc) or type(exc).__name__)
        raise


async def confirm_draw(db: AsyncSession, round_: Round) -> Round:
    if round_.draw_status != DrawStatus.DRAFT.value:
        raise BadRequest("Only a draft draw can be confirmed.")
    draw = await current_draw(db, round_.id)
    if draw is None:
        raise BadRequest("The round has no draw.")
    draw.status = DrawStatus.CONFIRMED.value
    round_.draw_status = DrawStatus.CONFIRMED.value
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return round_


_RELEASE_STATES = {
    DrawStatus.CONFIRMED.value,
    DrawStatus.RELEASED_TEAMS.value,
    DrawStatus.RELEASED_FULL.value,
}


async def _check_chairs(db: AsyncSession, draw: Draw) -> None:
    problems = []
    for debate in await draw_debates(db, draw.id):
        chairs = [row for row in await debate_judges(db, debate.id) if row.role == JudgeRole.CHAIR.value]
        if len(chairs) != 1:
            problems.append(f"Debate {debate.number} has {len(chairs)} chairs")
    if problems:
        raise BadRequest("Every debate needs exactly one chair before the full draw is released.", problems)


async def set_draw_released(db: AsyncSession, round_: Round, target: str) -> Round:
    if target not in _RELEASE_STATES:
        raise BadRequest("Unknown draw status")
    if round_.draw_status not in _RELEASE_STATES:
        raise BadRequest("The draw must be confirmed first.")
    draw = await current_draw(db, round_.id)
    if draw is None:
        raise BadRequest("The round has no draw.")
    if target == DrawStatus.RELEASED_FULL.value:
        await _check_chairs(db, draw)

    if target == DrawStatus.CONFIRMED.value:
        round_.draw_released_at = None
        draw.released_at = None
    else:
        now = datetime.utcnow()
        round_.draw_released_at = round_.draw_released_at or now
        draw.released_at = draw.released_at or now
    round_.draw_status = target
    draw.status = target
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return round_


async def set_debate_panel(db: AsyncSession, round_: Round, debate_id: str, slots: list[JudgeSlot]) -> list[DebateJudge]:
    """Заменяет состав судей дебата."""
    draw = await current_draw(db, round_.id)
    debate = await db.get(Debate, debate_id)
    if draw is None or debate is None or debate.draw_id != draw.id:
        raise NotFound("Debate not found")
    roles = [slot.role for slot in slots]
    if any(role not in {item.value for item in JudgeRole} for role in roles):
        raise BadRequest("Judge role must be chair, panelist or trainee")
    chairs = roles.count(JudgeRole.CHAIR.value)
    if chairs > 1:
        raise BadRequest("A debate has at most one chair")
    if round_.draw_status == DrawStatus.RELEASED_FULL.value and chairs != 1:
        raise BadRequest("Every debate needs exactly one chair once the full draw is released.")
    judge_ids = [slot.judge_id for slot in slots]
    if len(set(judge_ids)) != len(judge_ids):
        raise BadRequest("A judge is listed twice")
    found = (
        await db.scalars(select(Judge.id).where(Judge.tournament_id == round_.tournament_id, Judge.id.in_(judge_ids)))
    ).all()
    if len(found) != len(judge_ids):
        raise NotFound("Judge not found")
    busy = await db.scalar(
        select(DebateJudge.judge_id)
        .join(Debate, Debate.id == DebateJudge.debate_id)
        .where(Debate.draw_id == draw.id, Debate.id != debate.id, DebateJudge.judge_id.in_(judge_ids))
        .limit(1)
    )
    if busy is not None:
        raise BadRequest("A judge is already allocated to another debate in this round")

    await db.execute(delete(DebateJudge).where(DebateJudge.debate_id == debate.id))
    rows = []
    for slot in slots:
        row = DebateJudge(
            tournament_id=round_.tournament_id, debate_id=debate.id, judge_id=slot.judge_id, role=slot.role
        )
        db.add(row)
        rows.append(row)
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return rows


async def set_debate_room(db: AsyncSession, round_: Round, debate_id: str, room_id: str | None) -> Debate:
    """Назначает дебату комнату; комната снимается с других дебатов жеребьёвки."""
    draw = await current_draw(db, round_.id)
    debate = await db.get(Debate, debate_id)
    if draw is None or debate is None or debate.draw_id != draw.id:
        raise NotFound("Debate not found")
    if room_id is not None:
        room = await db.get(Room, room_id)
        if room is None or room.tournament_id != round_.tournament_id:
            raise NotFound("Room not found")
        await db.execute(
            update(Debate)
            .where(Debate.draw_id == draw.id, Debate.room_id == room_id, Debate.id != debate.id)
            .values(room_id=None)
        )
    debate.room_id = room_id
    await take_snapshot(db, round_.tournament_id)
    await db.commit()
    return debate


async def describe_draw(db: AsyncSession, round_: Round) -> dict:
    draw = await current_draw(db, round_.id)
    if draw is None:
        return {"round_id": round_.id, "status": round_.draw_status, "debates": [], "unallocated_rooms": []}
    debates = []
    allocated = set()
    for debate in await draw_debates(db, draw.id):
        teams = defaultdict(list)
        for row in await debate_teams(db, debate.id):
            teams["props" if row.side == 0 else "opps"].append(row.team_id)
        debates.append(
            {
                "id": debate.id,
                "number": debate.number,
                "room_id": debate.room_id,
                "bracket": debate.bracket,
                "status": debate.status,
                "props": teams["props"],
                "opps": teams["opps"],
                "judges": [
                    {"judge_id": row.judge_id, "role": row.role} for row in await debate_judges(db, debate.id)
                ],
            }
        )
        if debate.room_id is not None:
            allocated.add(debate.room_id)
    rooms = (
        await db.scalars(
            select(Room).where(Room.tournament_id == round_.tournament_id).order_by(Room.priority.desc(), Room.name)
        )
    ).all()
    return {
        "round_id": round_.id,
        "draw_id": draw.id,
        "version": draw.version,
        "status": round_.draw_status,
        "debates": debates,
        "unallocated_rooms": [{"id": room.id, "name": room.name} for room in rooms if room.id not in allocated],
    }
