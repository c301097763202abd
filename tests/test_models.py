import json
import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from luckydraw.models import Activity, Base, LotteryMode, Participant, Round, Winner


class DBTestCase(unittest.TestCase):
    def setUp(self):
        # In-memory SQLite for isolation
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def test_activity_get_by_name(self):
        with self.Session() as session:
            session.add(Activity(name="Kickoff"))
            session.commit()

            found = Activity.get_by_name(session, "Kickoff")
            self.assertIsNotNone(found)
            assert found is not None
            self.assertFalse(found.allow_multi_win)
            self.assertIsNone(Activity.get_by_name(session, "Missing"))

    def test_rounds_relationship_is_ordered(self):
        with self.Session() as session:
            activity = Activity(name="Ordered")
            session.add(activity)
            session.flush()
            for index in (2, 0, 1):
                session.add(
                    Round(activity_id=activity.id, prize_name=f"P{index}", order_index=index)
                )
            session.commit()
            session.refresh(activity)
            self.assertEqual([r.order_index for r in activity.rounds], [0, 1, 2])

    def test_order_index_unique_per_activity(self):
        with self.Session() as session:
            activity = Activity(name="Dup")
            session.add(activity)
            session.flush()
            session.add(Round(activity_id=activity.id, prize_name="A", order_index=0))
            session.add(Round(activity_id=activity.id, prize_name="B", order_index=0))
            with self.assertRaises(IntegrityError):
                session.flush()
            session.rollback()

    def test_winner_count_must_be_positive(self):
        with self.Session() as session:
            activity = Activity(name="Zero")
            session.add(activity)
            session.flush()
            session.add(Round(activity_id=activity.id, prize_name="A", winner_count=0))
            with self.assertRaises(IntegrityError):
                session.flush()
            session.rollback()

    def test_participant_wins_round_once(self):
        with self.Session() as session:
            activity = Activity(name="Unique winners")
            participant = Participant(name="Kim", activity=activity)
            rnd = Round(activity=activity, prize_name="A")
            session.add_all([activity, participant, rnd])
            session.flush()
            session.add(Winner(round_id=rnd.id, participant_id=participant.id))
            session.flush()
            session.add(Winner(round_id=rnd.id, participant_id=participant.id))
            with self.assertRaises(IntegrityError):
                session.flush()
            session.rollback()

    def test_participant_name_is_required(self):
        with self.assertRaises(ValueError):
            Participant(name="  ", activity_id=1)

    def test_lottery_mode_parse(self):
        self.assertIs(LotteryMode.parse(" Double_Ball "), LotteryMode.DOUBLE_BALL)
        self.assertIs(LotteryMode.parse(LotteryMode.SCRATCH), LotteryMode.SCRATCH)
        with self.assertRaises(ValueError):
            LotteryMode.parse("roulette")
        with self.assertRaises(ValueError):
            Round(prize_name="A", lottery_mode="roulette")

    def test_deleting_round_removes_winners(self):
        with self.Session() as session:
            activity = Activity(name="Cascade")
            participant = Participant(name="Lee", activity=activity)
            rnd = Round(activity=activity, prize_name="A", is_drawn=True)
            session.add_all([activity, participant, rnd])
            session.flush()
            session.add(Winner(round=rnd, participant=participant))
            session.commit()

            session.delete(rnd)
            session.commit()
            self.assertEqual(session.scalars(select(Winner)).all(), [])
            self.assertIsNotNone(session.get(Participant, participant.id))


class SerializationTestCase(DBTestCase):
    def test_models_to_json(self):
        now = datetime(2024, 12, 20, 9, 0, tzinfo=timezone.utc)
        with self.Session() as session:
            activity = Activity(
                name="Serializable",
                description="desc",
                allow_multi_win=True,
                created_at=now,
                updated_at=now,
            )
            participant = Participant(
                name="Mia",
                activity=activity,
                employee_id="E-1",
                department="R&D",
                email="mia@example.com",
                created_at=now,
            )
            rnd = Round(
                activity=activity,
                prize_name="Headphones",
                winner_count=2,
                lottery_mode=LotteryMode.SCRATCH,
                animation_duration_ms=12_000,
                created_at=now,
            )
            session.add_all([activity, participant, rnd])
            session.flush()
            winner = Winner(round=rnd, participant=participant, drawn_at=now)
            session.add(winner)
            session.flush()

            a = activity.to_json()
            self.assertEqual(a["name"], "Serializable")
            self.assertTrue(a["allow_multi_win"])
            self.assertEqual(a["created_at"], "2024-12-20T09:00:00+00:00")

            p = participant.to_json()
            self.assertEqual(p["activity_id"], activity.id)
            self.assertEqual(p["department"], "R&D")

            r = rnd.to_json()
            self.assertEqual(r["lottery_mode"], "scratch")
            self.assertEqual(r["winner_count"], 2)
            self.assertEqual(r["animation_duration_ms"], 12_000)
            self.assertFalse(r["is_drawn"])

            w = winner.to_json()
            self.assertEqual(w["round_id"], rnd.id)
            self.assertEqual(w["participant_id"], participant.id)

            # JSON-ready dicts must serialize without custom encoders
            for payload in (a, p, r, w):
                json.dumps(payload)


if __name__ == "__main__":
    unittest.main()
