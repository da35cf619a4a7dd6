"""Создание турнира, участников и служебных справочников."""

import logging
import secrets

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tabroom.core.errors import BadRequest, Conflict, NotFound
from tabroom.models.participants import Judge, Speaker, Team
from tabroom.models.tournament import BreakCategory, Institution, Room, Tournament
from tabroom.models.user import TournamentMember, User
from tabroom.schemas import TournamentConfig, TournamentCreate
from tabroom.services.metrics import dump_metrics, parse_pullup_metrics, parse_speaker_metrics, parse_team_metrics
from tabroom.services.snapshots import take_snapshot

logger = logging.getLogger(__name__)


async def create_user(db: AsyncSession, username: str, email: str) -> User:
    username = username.strip()
    if not username:
        raise BadRequest("Username is required")
    existing = await db.scalar(select(User).where(User.username == username))
    if existing is not None:
        raise Conflict("This username is already taken")
    user = User(username=username, email=email.strip())
    db.add(user)
    await db.commit()
    return user


def apply_config(tournament: Tournament, config: TournamentConfig) -> None:
    config.validate_metrics()
    for key, value in config.model_dump(
        exclude={"pullup_metrics", "team_standings_metrics", "speaker_standings_metrics"}
    ).items():
        setattr(tournament, key, value)
    tournament.pullup_metrics = dump_metrics(parse_pullup_metrics(config.pullup_metrics))
    tournament.team_standings_metrics = dump_metrics(parse_team_metrics(config.team_standings_metrics))
    tournament.speaker_standings_metrics = dump_metrics(parse_speaker_metrics(config.speaker_standings_metrics))


async def create_tournament(db: AsyncSession, user: User, data: TournamentCreate) -> Tournament:
    """Создаёт турнир; создатель становится его суперпользователем."""
    existing = await db.scalar(select(Tournament).where(Tournament.slug == data.slug))
    if existing is not None:
        raise Conflict("A tournament with this slug already exists")
    tournament = Tournament(name=data.name.strip(), abbrv=data.abbrv.strip(), slug=data.slug)
    apply_config(tournament, data.config)
    db.add(tournament)
    await db.flush()
    db.add(TournamentMember(tournament_id=tournament.id, user_id=user.id, is_superuser=True))
    await db.commit()
    logger.info("Tournament %s created by %s", tournament.id, user.id)
    return tournament


async def update_config(db: AsyncSession, tournament: Tournament, config: TournamentConfig) -> Tournament:
    apply_config(tournament, config)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return tournament


async def add_member(db: AsyncSession, tournament: Tournament, username: str, is_superuser: bool) -> TournamentMember:
    user = await db.scalar(select(User).where(User.username == username))
    if user is None:
        raise NotFound("User not found")
    member = await db.scalar(
        select(TournamentMember).where(
            TournamentMember.tournament_id == tournament.id,
            TournamentMember.user_id == user.id,
        )
    )
    if member is None:
        member = TournamentMember(tournament_id=tournament.id, user_id=user.id)
        db.add(member)
    member.is_superuser = is_superuser
    await take_snapshot(db, tournament.id)
    await db.commit()
    return member


async def create_institution(db: AsyncSession, tournament: Tournament, name: str, code: str) -> Institution:
    institution = Institution(tournament_id=tournament.id, name=name.strip(), code=code.strip())
    db.add(institution)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return institution


async def create_break_category(db: AsyncSession, tournament: Tournament, name: str, priority: int = 0) -> BreakCategory:
    category = BreakCategory(tournament_id=tournament.id, name=name.strip(), priority=priority)
    db.add(category)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return category


async def create_room(db: AsyncSession, tournament: Tournament, name: str, priority: int = 0) -> Room:
    room = Room(tournament_id=tournament.id, name=name.strip(), priority=priority)
    db.add(room)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return room


async def _check_institution(db: AsyncSession, tournament: Tournament, institution_id: str | None) -> None:
    if institution_id is None:
        return
    institution = await db.get(Institution, institution_id)
    if institution is None or institution.tournament_id != tournament.id:
        raise NotFound("Institution not found")


async def _unique_private_url(db: AsyncSession, tournament_id: str) -> str:
    # Токен должен быть уникален и среди спикеров, и среди судей турнира.
    while True:
        token = secrets.token_urlsafe(12)
        speaker = await db.scalar(
            select(Speaker.id).where(Speaker.tournament_id == tournament_id, Speaker.private_url == token)
        )
        judge = await db.scalar(select(Judge.id).where(Judge.tournament_id == tournament_id, Judge.private_url == token))
        if speaker is None and judge is None:
            return token


async def create_team(
    db: AsyncSession,
    tournament: Tournament,
    name: str,
    speaker_names: list[str] | None = None,
    institution_id: str | None = None,
) -> Team:
    await _check_institution(db, tournament, institution_id)
    number = (await db.scalar(select(func.max(Team.number)).where(Team.tournament_id == tournament.id))) or 0
    team = Team(tournament_id=tournament.id, name=name.strip(), institution_id=institution_id, number=number + 1)
    db.add(team)
    await db.flush()
    for speaker_name in speaker_names or []:
        db.add(
            Speaker(
                tournament_id=tournament.id,
                team_id=team.id,
                name=speaker_name.strip(),
                private_url=await _unique_private_url(db, tournament.id),
            )
        )
    await take_snapshot(db, tournament.id)
    await db.commit()
    return team


async def create_speaker(
    db: AsyncSession, tournament: Tournament, team_id: str, name: str, email: str | None = None
) -> Speaker:
    team = await db.get(Team, team_id)
    if team is None or team.tournament_id != tournament.id:
        raise NotFound("Team not found")
    speaker = Speaker(
        tournament_id=tournament.id,
        team_id=team.id,
        name=name.strip(),
        email=email,
        private_url=await _unique_private_url(db, tournament.id),
    )
    db.add(speaker)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return speaker


async def create_judge(db: AsyncSession, tournament: Tournament, name: str, institution_id: str | None = None) -> Judge:
    await _check_institution(db, tournament, institution_id)
    number = (await db.scalar(select(func.max(Judge.number)).where(Judge.tournament_id == tournament.id))) or 0
    judge = Judge(
        tournament_id=tournament.id,
        name=name.strip(),
        institution_id=institution_id,
        private_url=await _unique_private_url(db, tournament.id),
        number=number + 1,
    )
    db.add(judge)
    await take_snapshot(db, tournament.id)
    await db.commit()
    return judge
