"""Небольшие запросы-строительные блоки, из которых собираются сервисы."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.errors import NotFound
from tabroom.models.draw import Debate, DebateJudge, DebateTeam, Draw
from tabroom.models.participants import Judge, Speaker, Team
from tabroom.models.round import Round, TeamAvailability
from tabroom.models.tournament import Tournament
from tabroom.models.user import TournamentMember


async def get_tournament(db: AsyncSession, tournament_id: str) -> Tournament:
    tournament = await db.get(Tournament, tournament_id)
    if tournament is None:
        raise NotFound("Tournament not found")
    return tournament


async def get_round(db: AsyncSession, tournament_id: str, round_id: str) -> Round:
    round_ = await db.get(Round, round_id)
    if round_ is None or round_.tournament_id != tournament_id:
        raise NotFound("Round not found")
    return round_


async def get_membership(db: AsyncSession, tournament_id: str, user_id: str | None) -> TournamentMember | None:
    if user_id is None:
        return None
    return await db.scalar(
        select(TournamentMember).where(
            TournamentMember.tournament_id == tournament_id,
            TournamentMember.user_id == user_id,
        )
    )


async def get_judge_by_private_url(db: AsyncSession, tournament_id: str, private_url: str) -> Judge:
    judge = await db.scalar(
        select(Judge).where(Judge.tournament_id == tournament_id, Judge.private_url == private_url)
    )
    if judge is None:
        raise NotFound("Private URL not found")
    return judge


async def current_draw(db: AsyncSession, round_id: str) -> Draw | None:
    return await db.scalar(select(Draw).where(Draw.round_id == round_id).order_by(Draw.version.desc()).limit(1))


async def max_draw_version(db: AsyncSession, round_id: str) -> int | None:
    return await db.scalar(select(func.max(Draw.version)).where(Draw.round_id == round_id))


async def draw_debates(db: AsyncSession, draw_id: str) -> list[Debate]:
    return list((await db.scalars(select(Debate).where(Debate.draw_id == draw_id).order_by(Debate.number))).all())


async def debate_teams(db: AsyncSession, debate_id: str) -> list[DebateTeam]:
    rows = await db.scalars(
        select(DebateTeam).where(DebateTeam.debate_id == debate_id).order_by(DebateTeam.seq, DebateTeam.side)
    )
    return list(rows.all())


async def debate_judges(db: AsyncSession, debate_id: str) -> list[DebateJudge]:
    return list((await db.scalars(select(DebateJudge).where(DebateJudge.debate_id == debate_id))).all())


async def available_team_ids(db: AsyncSession, round_id: str) -> set[str]:
    rows = await db.scalars(
        select(TeamAvailability.team_id).where(
            TeamAvailability.round_id == round_id,
            TeamAvailability.available.is_(True),
        )
    )
    return set(rows.all())


async def team_speakers(db: AsyncSession, team_id: str) -> list[Speaker]:
    return list((await db.scalars(select(Speaker).where(Speaker.team_id == team_id))).all())


async def tournament_teams(db: AsyncSession, tournament_id: str) -> list[Team]:
    rows = await db.scalars(select(Team).where(Team.tournament_id == tournament_id).order_by(Team.number))
    return list(rows.all())


async def is_final_round(db: AsyncSession, round_: Round) -> bool:
    """Последний раунд элиминаций своей категории брейка."""
    if round_.break_category_id is None:
        return False
    later = await db.scalar(
        select(Round.id).where(
            Round.tournament_id == round_.tournament_id,
            Round.break_category_id == round_.break_category_id,
            Round.seq > round_.seq,
        ).limit(1)
    )
    return later is None
