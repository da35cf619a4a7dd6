import unittest
from decimal import Decimal

from sqlalchemy import delete, select

from tabroom.core.errors import BadRequest, BallotVersionConflict
from tabroom.models.ballot import Ballot
from tabroom.models.draw import DebateSpeakerResult, DebateStatus, DebateTeamResult
from tabroom.models.round import DrawStatus
from tabroom.schemas import BallotSubmission, SpeakerEntry, TeamEntry
from tabroom.services.ballots import aggregate_debate, submit_ballot
from tabroom.services.drawalgs import DrawnRoom
from tabroom.services.draws import acquire_ticket, commit_draw, confirm_draw, set_debate_panel, set_draw_released
from tabroom.services.queries import current_draw, draw_debates, team_speakers
from tabroom.services.rounds import (
    add_motion,
    create_round,
    set_results_published,
    set_round_completed,
    set_team_availability,
)
from tabroom.services.standings import StandingsConfig, compute_team_standings, load_standings_input
from tabroom.services.tournament import create_break_category

from db_utils import make_judges, make_session_factory, make_teams, make_tournament, panel


async def release_draw(db, tournament, round_, room: DrawnRoom, judges):
    team_ids = room.props + room.opps
    await set_team_availability(db, round_, team_ids, True)
    ticket = await acquire_ticket(db, round_)
    draw = await commit_draw(db, round_, ticket.id, [room], force=False)
    await confirm_draw(db, round_)
    debate = (await draw_debates(db, draw.id))[0]
    await set_debate_panel(db, round_, debate.id, panel(judges))
    await set_draw_released(db, round_, DrawStatus.RELEASED_FULL.value)
    return debate


def entry(speakers, scores) -> TeamEntry:
    return TeamEntry(
        speakers=[SpeakerEntry(speaker_id=speaker.id, score=Decimal(str(score))) for speaker, score in zip(speakers, scores)]
    )


class PrelimBallotTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.session_factory = await make_session_factory()
        self.db = self.session_factory()
        _, self.tournament = await make_tournament(self.db, teams_per_side=1)
        self.prop, self.opp = await make_teams(self.db, self.tournament, 2)
        self.judges = await make_judges(self.db, self.tournament, 2)
        self.round = await create_round(self.db, self.tournament, "Round 1", 1)
        self.motion = await add_motion(self.db, self.round, "This house would test everything")
        self.debate = await release_draw(
            self.db, self.tournament, self.round, DrawnRoom(props=[self.prop.id], opps=[self.opp.id]), self.judges
        )
        self.prop_speakers = await team_speakers(self.db, self.prop.id)
        self.opp_speakers = await team_speakers(self.db, self.opp.id)

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()

    def ballot(self, prop_scores=(75, 74), opp_scores=(72, 71), prop_speakers=None, **kwargs) -> BallotSubmission:
        return BallotSubmission(
            motion_id=self.motion.id,
            teams=[
                entry(prop_speakers or self.prop_speakers, prop_scores),
                entry(self.opp_speakers, opp_scores),
            ],
            **kwargs,
        )

    async def submit(self, judge, submission):
        return await submit_ballot(self.db, self.tournament, self.round, judge.private_url, submission)

    async def team_results(self) -> dict[str, int]:
        rows = await self.db.scalars(select(DebateTeamResult).where(DebateTeamResult.debate_id == self.debate.id))
        return {row.team_id: row.points for row in rows.all()}

    async def test_agreeing_panel_confirms_result(self) -> None:
        outcome = await self.submit(self.judges[0], self.ballot())
        self.assertEqual(outcome.ballot.version, 0)
        self.assertEqual(outcome.debate_status, DebateStatus.DRAFT.value)
        self.assertEqual(await self.team_results(), {})

        outcome = await self.submit(self.judges[1], self.ballot())
        self.assertEqual(outcome.debate_status, DebateStatus.CONFIRMED.value)
        self.assertEqual(outcome.problems, [])
        self.assertEqual(await self.team_results(), {self.prop.id: 1, self.opp.id: 0})
        speaker_rows = (
            await self.db.scalars(select(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == self.debate.id))
        ).all()
        self.assertEqual(len(speaker_rows), 4)

    async def test_disagreeing_ballots_are_kept_and_reported(self) -> None:
        await self.submit(self.judges[0], self.ballot())
        swapped = list(reversed(self.prop_speakers))
        outcome = await self.submit(self.judges[1], self.ballot(prop_speakers=swapped))

        self.assertEqual(outcome.debate_status, DebateStatus.CONFLICT.value)
        self.assertTrue(any("PM" in problem and "Judge 1" in problem for problem in outcome.problems))
        self.assertEqual(await self.team_results(), {})
        ballots = (await self.db.scalars(select(Ballot).where(Ballot.debate_id == self.debate.id))).all()
        self.assertEqual(len(ballots), 2)

    async def test_invalid_ballots_are_rejected(self) -> None:
        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], self.ballot(prop_scores=(75.5, 74)))
        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], self.ballot(prop_scores=(72, 71)))
        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], self.ballot(prop_speakers=[self.prop_speakers[0]] * 2))
        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], self.ballot(prop_speakers=self.opp_speakers))
        wrong_motion = self.ballot()
        wrong_motion.motion_id = "missing"
        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], wrong_motion)

    async def test_resubmission_needs_the_current_version(self) -> None:
        await self.submit(self.judges[0], self.ballot())
        with self.assertRaises(BallotVersionConflict):
            await self.submit(self.judges[0], self.ballot(expected_version=3))
        outcome = await self.submit(self.judges[0], self.ballot(prop_scores=(70, 70), expected_version=0))
        self.assertEqual(outcome.ballot.version, 1)

    async def test_completion_requires_every_ballot(self) -> None:
        await self.submit(self.judges[0], self.ballot())
        with self.assertRaises(BadRequest) as ctx:
            await set_round_completed(self.db, self.tournament, self.round, True)
        self.assertTrue(any("Judge 2" in detail for detail in ctx.exception.details))

    async def test_completed_round_feeds_standings(self) -> None:
        await self.submit(self.judges[0], self.ballot())
        await self.submit(self.judges[1], self.ballot())
        round_ = await set_round_completed(self.db, self.tournament, self.round, True)
        self.assertTrue(round_.completed)
        await set_results_published(self.db, round_, True)
        self.assertIsNotNone(round_.results_published_at)

        data = await load_standings_input(self.db, self.tournament)
        standings = compute_team_standings(StandingsConfig.from_tournament(self.tournament), data)
        self.assertEqual(standings.rank_of(self.prop.id), 1)
        self.assertEqual(standings.values[self.prop.id], [Decimal(1), Decimal(149)])

        with self.assertRaises(BadRequest):
            await self.submit(self.judges[0], self.ballot())

    async def test_reaggregation_reproduces_results(self) -> None:
        await self.submit(self.judges[0], self.ballot())
        await self.submit(self.judges[1], self.ballot())

        async def rows():
            teams = (
                await self.db.scalars(select(DebateTeamResult).where(DebateTeamResult.debate_id == self.debate.id))
            ).all()
            speakers = (
                await self.db.scalars(
                    select(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == self.debate.id)
                )
            ).all()
            return (
                sorted((row.team_id, row.points) for row in teams),
                sorted((row.speaker_id, row.team_id, row.position, row.score) for row in speakers),
            )

        before = await rows()
        await self.db.execute(delete(DebateTeamResult).where(DebateTeamResult.debate_id == self.debate.id))
        await self.db.execute(delete(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == self.debate.id))
        await aggregate_debate(self.db, self.tournament, self.round, self.debate)
        await self.db.commit()
        self.assertEqual(await rows(), before)


class ElimBallotTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.session_factory = await make_session_factory()
        self.db = self.session_factory()

    async def asyncTearDown(self) -> None:
        await self.db.close()
        await self.engine.dispose()

    async def test_semifinal_advances_two_teams(self) -> None:
        _, tournament = await make_tournament(self.db, teams_per_side=2)
        teams = await make_teams(self.db, tournament, 4)
        judges = await make_judges(self.db, tournament, 1)
        category = await create_break_category(self.db, tournament, "Open")
        semi = await create_round(self.db, tournament, "Semifinal", 1, "elim", category.id)
        await create_round(self.db, tournament, "Final", 2, "elim", category.id)
        motion = await add_motion(self.db, semi, "This house would break ties")
        a, b, c, d = teams
        debate = await release_draw(
            self.db, tournament, semi, DrawnRoom(props=[a.id, c.id], opps=[b.id, d.id]), judges
        )

        # Порядок команд в бюллетене: OG, OO, CG, CO.
        three_advancing = BallotSubmission(
            motion_id=motion.id,
            teams=[TeamEntry(points=1), TeamEntry(points=1), TeamEntry(points=1), TeamEntry(points=0)],
        )
        with self.assertRaises(BadRequest):
            await submit_ballot(self.db, tournament, semi, judges[0].private_url, three_advancing)

        submission = BallotSubmission(
            motion_id=motion.id,
            teams=[TeamEntry(points=1), TeamEntry(points=1), TeamEntry(points=0), TeamEntry(points=0)],
        )
        outcome = await submit_ballot(self.db, tournament, semi, judges[0].private_url, submission)
        self.assertEqual(outcome.debate_status, DebateStatus.CONFIRMED.value)

        rows = (await self.db.scalars(select(DebateTeamResult).where(DebateTeamResult.debate_id == debate.id))).all()
        self.assertEqual({row.team_id: row.points for row in rows}, {a.id: 1, b.id: 1, c.id: 0, d.id: 0})
        speaker_rows = (
            await self.db.scalars(select(DebateSpeakerResult).where(DebateSpeakerResult.debate_id == debate.id))
        ).all()
        self.assertEqual(speaker_rows, [])

        draw = await current_draw(self.db, semi.id)
        self.assertEqual(draw.status, DrawStatus.RELEASED_FULL.value)
