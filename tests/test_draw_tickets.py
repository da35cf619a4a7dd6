import random
import unittest

from sqlalchemy import func, select

from tabroom.core.errors import (
    AlreadyInProgress,
    DrawAlreadyExists,
    InvalidTeamCount,
    StaleAvailability,
    TicketExpired,
)
from tabroom.models.draw import Debate, DebateTeam, Draw
from tabroom.models.round import DrawStatus, RoundTicket
from tabroom.services.drawalgs import generate_random_draw
from tabroom.services.draws import acquire_ticket, commit_draw, release_ticket, run_draw_job
from tabroom.services.queries import get_round
from tabroom.services.rounds import create_round, set_team_availability

from db_utils import make_session_factory, make_teams, make_tournament


class DrawTicketTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.session_factory = await make_session_factory()
        async with self.session_factory() as db:
            _, tournament = await make_tournament(db, teams_per_side=1)
            teams = await make_teams(db, tournament, 4)
            round_ = await create_round(db, tournament, "Round 1", 1)
            await set_team_availability(db, round_, [team.id for team in teams], True)
            self.tournament_id = tournament.id
            self.round_id = round_.id
            self.team_ids = [team.id for team in teams]

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    def rooms(self, team_ids=None):
        return generate_random_draw(team_ids or self.team_ids, 1, random.Random(0))

    async def count(self, db, model, **filters) -> int:
        query = select(func.count()).select_from(model)
        for key, value in filters.items():
            query = query.where(getattr(model, key) == value)
        return await db.scalar(query)

    async def test_forced_request_preempts_running_generation(self) -> None:
        async with self.session_factory() as db:
            round_ = await get_round(db, self.tournament_id, self.round_id)
            first = await acquire_ticket(db, round_)
            self.assertEqual(first.seq, 0)

            with self.assertRaises(AlreadyInProgress):
                await acquire_ticket(db, round_)

            second = await acquire_ticket(db, round_, force=True)
            self.assertEqual(second.seq, 1)

            with self.assertRaises(TicketExpired):
                await commit_draw(db, round_, first.id, self.rooms(), force=False)
            self.assertEqual(await self.count(db, Draw, round_id=self.round_id), 0)

            draw = await commit_draw(db, round_, second.id, self.rooms(), force=False)
            self.assertEqual(draw.version, 0)
            self.assertEqual(round_.draw_status, DrawStatus.DRAFT.value)
            unreleased = await db.scalar(
                select(func.count())
                .select_from(RoundTicket)
                .where(RoundTicket.round_id == self.round_id, RoundTicket.released.is_(False))
            )
            self.assertEqual(unreleased, 0)
            preempted = await db.get(RoundTicket, first.id)
            self.assertEqual(preempted.error, "Preempted by a forced draw.")

    async def test_existing_draw_needs_force_and_is_replaced(self) -> None:
        async with self.session_factory() as db:
            round_ = await get_round(db, self.tournament_id, self.round_id)
            ticket = await acquire_ticket(db, round_)
            first = await commit_draw(db, round_, ticket.id, self.rooms(), force=False)

            ticket = await acquire_ticket(db, round_)
            with self.assertRaises(DrawAlreadyExists):
                await commit_draw(db, round_, ticket.id, self.rooms(), force=False)
            await release_ticket(db, ticket.id, "Draw already exists.")

            ticket = await acquire_ticket(db, round_)
            second = await commit_draw(db, round_, ticket.id, self.rooms(), force=True)
            self.assertEqual(second.version, first.version + 1)
            self.assertEqual(await self.count(db, Draw, round_id=self.round_id), 1)
            self.assertEqual(await self.count(db, Debate, round_id=self.round_id), 2)
            self.assertEqual(await self.count(db, DebateTeam), 4)

    async def test_availability_change_during_generation_is_rejected(self) -> None:
        async with self.session_factory() as db:
            round_ = await get_round(db, self.tournament_id, self.round_id)
            ticket = await acquire_ticket(db, round_)
            rooms = self.rooms()
            await set_team_availability(db, round_, [self.team_ids[0]], False)
            with self.assertRaises(StaleAvailability) as ctx:
                await commit_draw(db, round_, ticket.id, rooms, force=False)
            self.assertEqual(ctx.exception.details, [self.team_ids[0]])
            self.assertEqual(await self.count(db, Draw, round_id=self.round_id), 0)

    async def test_draw_job_commits_power_draw(self) -> None:
        async with self.session_factory() as db:
            round_ = await get_round(db, self.tournament_id, self.round_id)
            ticket = await acquire_ticket(db, round_)
        draw_id = await run_draw_job(self.session_factory, None, self.tournament_id, self.round_id, ticket.id, seed=3)
        async with self.session_factory() as db:
            draw = await db.get(Draw, draw_id)
            self.assertEqual(draw.version, 0)
            self.assertEqual(await self.count(db, Debate, draw_id=draw_id), 2)
            stored = await db.get(RoundTicket, ticket.id)
            self.assertTrue(stored.released)
            self.assertIsNone(stored.error)

    async def test_failed_job_releases_ticket_with_error(self) -> None:
        async with self.session_factory() as db:
            round_ = await get_round(db, self.tournament_id, self.round_id)
            await set_team_availability(db, round_, [self.team_ids[0]], False)
            ticket = await acquire_ticket(db, round_)
        with self.assertRaises(InvalidTeamCount):
            await run_draw_job(self.session_factory, None, self.tournament_id, self.round_id, ticket.id)
        async with self.session_factory() as db:
            stored = await db.get(RoundTicket, ticket.id)
            self.assertTrue(stored.released)
            self.assertIn("Wrong number of teams", stored.error)
            self.assertEqual(await self.count(db, Draw, round_id=self.round_id), 0)
            # После ошибки можно сразу запросить новую жеребьёвку.
            round_ = await get_round(db, self.tournament_id, self.round_id)
            retry = await acquire_ticket(db, round_)
            self.assertEqual(retry.seq, 0)
