"""Общие заготовки для тестов с настоящей БД в памяти."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tabroom.db.base import Base
from tabroom.models.draw import JudgeRole
from tabroom.models.user import User
from tabroom.schemas import JudgeSlot, TournamentConfig, TournamentCreate
from tabroom.services.tournament import create_judge, create_team, create_tournament, create_user


async def make_session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def make_tournament(db: AsyncSession, slug: str = "demo", **config):
    user: User = await create_user(db, f"admin-{slug}", "admin@example.com")
    tournament = await create_tournament(
        db,
        user,
        TournamentCreate(name="Demo Open", abbrv="DO", slug=slug, config=TournamentConfig(**config)),
    )
    return user, tournament


async def make_teams(db: AsyncSession, tournament, count: int, speakers: int = 2):
    teams = []
    for index in range(count):
        teams.append(
            await create_team(
                db,
                tournament,
                f"Team {index + 1}",
                [f"Speaker {index + 1}.{position + 1}" for position in range(speakers)],
            )
        )
    return teams


async def make_judges(db: AsyncSession, tournament, count: int):
    return [await create_judge(db, tournament, f"Judge {index + 1}") for index in range(count)]


def panel(judges, chair_index: int = 0, trainees: tuple[int, ...] = ()) -> list[JudgeSlot]:
    slots = []
    for index, judge in enumerate(judges):
        if index == chair_index:
            role = JudgeRole.CHAIR.value
        elif index in trainees:
            role = JudgeRole.TRAINEE.value
        else:
            role = JudgeRole.PANELIST.value
        slots.append(JudgeSlot(judge_id=judge.id, role=role))
    return slots
