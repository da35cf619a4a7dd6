import json
import unittest

from sqlalchemy import select

from tabroom.models.snapshot import Snapshot
from tabroom.services.snapshots import UNVERSIONED_SCHEMA, snapshot_chain, snapshot_head
from tabroom.services.tournament import create_team

from db_utils import make_session_factory, make_tournament


class SnapshotChainTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.session_factory = await make_session_factory()

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def test_each_mutation_extends_the_chain(self) -> None:
        async with self.session_factory() as db:
            _, tournament = await make_tournament(db)
            self.assertIsNone(await snapshot_head(db, tournament.id))

            await create_team(db, tournament, "Alpha", ["A1", "A2"])
            first = await snapshot_head(db, tournament.id)
            self.assertIsNotNone(first)
            self.assertIsNone(first.prev)
            self.assertEqual(first.schema_id, UNVERSIONED_SCHEMA)

            await create_team(db, tournament, "Beta", ["B1", "B2"])
            second = await snapshot_head(db, tournament.id)
            self.assertEqual(second.prev, first.id)

            chain = await snapshot_chain(db, tournament.id)
            self.assertEqual([snapshot.id for snapshot in chain], [second.id, first.id])

    async def test_contents_capture_tournament_rows(self) -> None:
        async with self.session_factory() as db:
            _, tournament = await make_tournament(db)
            await create_team(db, tournament, "Alpha", ["A1", "A2"])
            snapshot = await db.scalar(select(Snapshot).where(Snapshot.tournament_id == tournament.id))
            contents = json.loads(snapshot.contents)

            self.assertEqual(contents["tournament"]["id"], tournament.id)
            self.assertEqual([team["name"] for team in contents["teams"]], ["Alpha"])
            self.assertEqual(sorted(speaker["name"] for speaker in contents["speakers"]), ["A1", "A2"])
            self.assertNotIn("snapshots", contents)
            self.assertNotIn("round_tickets", contents)

    async def test_chains_are_kept_per_tournament(self) -> None:
        async with self.session_factory() as db:
            _, first = await make_tournament(db, slug="first")
            _, second = await make_tournament(db, slug="second")
            await create_team(db, first, "Alpha")
            await create_team(db, second, "Beta")
            await create_team(db, first, "Gamma")

            self.assertEqual(len(await snapshot_chain(db, first.id)), 2)
            chain = await snapshot_chain(db, second.id)
            self.assertEqual(len(chain), 1)
            self.assertIsNone(chain[0].prev)
