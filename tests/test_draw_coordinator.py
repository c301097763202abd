import os
import random
import tempfile
import threading
import unittest

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from luckydraw.draw import DrawCoordinator, FairSelector
from luckydraw.errors import (
    AlreadyDrawnError,
    ConcurrentDrawError,
    InsufficientParticipantsError,
    LotteryError,
    NotFoundError,
    RoundOutOfOrderError,
)
from luckydraw.models import Activity, Base, LotteryMode, Participant, Round, Winner
from luckydraw.repository import SqlDrawStore


def seed_activity(Session, names, winner_counts, allow_multi_win=False):
    """Create an activity with one participant per name and one round per count."""
    with Session.begin() as session:
        activity = Activity(name="Year-end party", allow_multi_win=allow_multi_win)
        session.add(activity)
        session.flush()
        for name in names:
            session.add(Participant(name=name, activity_id=activity.id))
        rounds = []
        for index, count in enumerate(winner_counts):
            rnd = Round(
                activity_id=activity.id,
                prize_name=f"Prize {index + 1}",
                winner_count=count,
                order_index=index,
                lottery_mode=LotteryMode.SLOT_MACHINE,
                animation_duration_ms=15_000,
            )
            session.add(rnd)
            rounds.append(rnd)
        session.flush()
        return activity.id, [r.id for r in rounds]


class DrawCoordinatorTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )
        self.coordinator = DrawCoordinator(
            self.Session, selector=FairSelector(random.Random(1234)), lock_timeout=5
        )

    def tearDown(self):
        self.engine.dispose()

    def winner_rows(self, round_id):
        with self.Session() as session:
            return list(
                session.scalars(select(Winner).where(Winner.round_id == round_id))
            )

    def test_five_participants_split_over_two_rounds(self):
        activity_id, (first, second, third) = seed_activity(
            self.Session, ["A", "B", "C", "D", "E"], [2, 3, 1]
        )

        r1 = self.coordinator.execute_draw(first)
        self.assertEqual(len(r1.winners), 2)
        self.assertTrue(r1.round.is_drawn)
        self.assertEqual(r1.mode, LotteryMode.SLOT_MACHINE)

        remaining = self.coordinator.list_available_participants(activity_id)
        self.assertEqual(len(remaining), 3)
        self.assertTrue(
            {p.id for p in remaining}.isdisjoint({p.id for p in r1.winners})
        )

        r2 = self.coordinator.execute_draw(second)
        self.assertEqual({p.id for p in r2.winners}, {p.id for p in remaining})
        self.assertEqual(
            {p.name for p in r1.winners} | {p.name for p in r2.winners},
            {"A", "B", "C", "D", "E"},
        )

        with self.assertRaises(InsufficientParticipantsError) as ctx:
            self.coordinator.execute_draw(third)
        self.assertEqual(
            ctx.exception.details, {"required": 1, "available": 0, "shortage": 1}
        )
        self.assertEqual(self.winner_rows(third), [])

    def test_insufficient_round_persists_nothing(self):
        _, (round_id,) = seed_activity(self.Session, ["A", "B"], [3])

        with self.assertRaises(InsufficientParticipantsError) as ctx:
            self.coordinator.execute_draw(round_id)
        self.assertEqual(ctx.exception.code, "INSUFFICIENT_PARTICIPANTS")
        self.assertEqual(ctx.exception.shortage, 1)

        with self.Session() as session:
            self.assertFalse(session.get(Round, round_id).is_drawn)
            self.assertEqual(session.scalar(select(func.count(Winner.id))), 0)

    def test_drawn_round_cannot_be_drawn_again(self):
        _, (round_id,) = seed_activity(self.Session, ["A", "B", "C"], [1])
        self.coordinator.execute_draw(round_id)
        with self.assertRaises(AlreadyDrawnError):
            self.coordinator.execute_draw(round_id)
        self.assertEqual(len(self.winner_rows(round_id)), 1)

    def test_rounds_must_be_drawn_in_order(self):
        _, (first, second) = seed_activity(self.Session, ["A", "B", "C"], [1, 1])
        with self.assertRaises(RoundOutOfOrderError) as ctx:
            self.coordinator.execute_draw(second)
        self.assertEqual(ctx.exception.blocking_round_id, first)
        self.assertEqual(self.winner_rows(second), [])

        self.coordinator.execute_draw(first)
        result = self.coordinator.execute_draw(second)
        self.assertEqual(len(result.winners), 1)

    def test_missing_round_raises_not_found(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.coordinator.execute_draw(999)
        self.assertEqual(ctx.exception.details, {"entity": "Round", "id": 999})
        with self.assertRaises(NotFoundError):
            self.coordinator.redraw(999)
        with self.assertRaises(NotFoundError):
            self.coordinator.list_available_participants(999)

    def test_multi_win_draws_from_full_roster(self):
        activity_id, (first, second) = seed_activity(
            self.Session, ["A", "B", "C"], [3, 3], allow_multi_win=True
        )
        self.coordinator.execute_draw(first)
        self.assertEqual(
            len(self.coordinator.list_available_participants(activity_id)), 3
        )
        result = self.coordinator.execute_draw(second)
        self.assertEqual(len(result.winners), 3)

    def test_redraw_restores_pending_state(self):
        activity_id, (round_id,) = seed_activity(
            self.Session, ["A", "B", "C", "D"], [2]
        )
        self.coordinator.execute_draw(round_id)
        self.assertEqual(
            len(self.coordinator.list_available_participants(activity_id)), 2
        )

        deleted = self.coordinator.redraw(round_id)
        self.assertEqual(deleted, 2)
        self.assertEqual(self.winner_rows(round_id), [])
        self.assertEqual(self.coordinator.get_draw_result(round_id), [])
        self.assertEqual(
            len(self.coordinator.list_available_participants(activity_id)), 4
        )
        rounds = self.coordinator.load_rounds(activity_id)
        self.assertFalse(rounds[0].is_drawn)

        again = self.coordinator.execute_draw(round_id)
        self.assertEqual(len(again.winners), 2)

    def test_redraw_ignores_round_order(self):
        _, (first, second) = seed_activity(self.Session, ["A", "B", "C"], [1, 1])
        self.coordinator.execute_draw(first)
        self.coordinator.execute_draw(second)
        self.assertEqual(self.coordinator.redraw(first), 1)
        self.assertEqual(len(self.winner_rows(second)), 1)

    def test_draw_result_details(self):
        activity_id, (first, second) = seed_activity(
            self.Session, ["A", "B", "C"], [1, 2]
        )
        self.assertEqual(self.coordinator.get_draw_result(first), [])

        drawn = self.coordinator.execute_draw(first)
        details = self.coordinator.get_draw_result(first)
        self.assertEqual(len(details), 1)
        self.assertEqual(details[0].participant.id, drawn.winners[0].id)
        self.assertEqual(details[0].round.id, first)
        payload = details[0].to_json()
        self.assertEqual(payload["participant"]["name"], drawn.winners[0].name)
        self.assertEqual(payload["round"]["prize_name"], "Prize 1")

        self.coordinator.execute_draw(second)
        all_details = self.coordinator.get_activity_winners(activity_id)
        self.assertEqual([d.round.id for d in all_details], [first, second, second])

    def test_deleted_winner_keeps_round_drawn(self):
        _, (round_id,) = seed_activity(self.Session, ["A", "B"], [1])
        drawn = self.coordinator.execute_draw(round_id)

        with self.Session.begin() as session:
            session.delete(session.get(Participant, drawn.winners[0].id))

        details = self.coordinator.get_draw_result(round_id)
        self.assertEqual(len(details), 1)
        self.assertIsNone(details[0].participant)
        self.assertIsNone(details[0].to_json()["participant"])
        with self.assertRaises(AlreadyDrawnError):
            self.coordinator.execute_draw(round_id)

    def test_draw_result_json(self):
        _, (round_id,) = seed_activity(self.Session, ["A", "B"], [2])
        payload = self.coordinator.execute_draw(round_id).to_json()
        self.assertEqual(payload["mode"], "slot_machine")
        self.assertTrue(payload["round"]["is_drawn"])
        self.assertEqual(sorted(w["name"] for w in payload["winners"]), ["A", "B"])
        self.assertTrue(payload["drawn_at"].endswith("+00:00"))

    def test_animation_duration(self):
        _, (round_id,) = seed_activity(self.Session, ["A"], [1])
        self.assertEqual(self.coordinator.get_animation_duration(round_id), 15_000)

    def test_conditional_update_rejects_drawn_round(self):
        _, (round_id,) = seed_activity(self.Session, ["A", "B"], [1])
        self.coordinator.execute_draw(round_id)

        with self.Session() as session:
            store = SqlDrawStore(session)
            participant = session.scalars(select(Participant)).first()
            with self.assertRaises(ConcurrentDrawError):
                store.insert_winners_and_mark_drawn(
                    round_id, [participant.id], drawn_at=None
                )
            session.rollback()

    def test_round_locks_are_released(self):
        _, (first, second) = seed_activity(self.Session, ["A", "B"], [1, 5])
        self.coordinator.execute_draw(first)
        with self.assertRaises(InsufficientParticipantsError):
            self.coordinator.execute_draw(second)
        self.coordinator.redraw(first)
        self.assertEqual(len(self.coordinator._locks), 0)

    def test_errors_share_base_class(self):
        _, (round_id,) = seed_activity(self.Session, ["A"], [2])
        with self.assertRaises(LotteryError) as ctx:
            self.coordinator.execute_draw(round_id)
        self.assertEqual(ctx.exception.to_json()["code"], "INSUFFICIENT_PARTICIPANTS")


class ConcurrentDrawTestCase(unittest.TestCase):
    def setUp(self):
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = create_engine(f"sqlite+pysqlite:///{self.db_path}", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )
        self.coordinator = DrawCoordinator(self.Session, lock_timeout=10)

    def tearDown(self):
        self.engine.dispose()
        os.remove(self.db_path)

    def test_two_threads_draw_round_once(self):
        _, (round_id,) = seed_activity(
            self.Session, [f"P{i}" for i in range(10)], [3]
        )
        barrier = threading.Barrier(2)
        outcomes = []
        outcome_lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                result = self.coordinator.execute_draw(round_id)
            except LotteryError as exc:
                outcome = exc
            else:
                outcome = result
            with outcome_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(len(outcomes), 2)
        failures = [o for o in outcomes if isinstance(o, LotteryError)]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], AlreadyDrawnError)

        with self.Session() as session:
            winners = session.scalars(
                select(Winner).where(Winner.round_id == round_id)
            ).all()
            self.assertEqual(len(winners), 3)
            self.assertEqual(len({w.participant_id for w in winners}), 3)
        self.assertEqual(len(self.coordinator._locks), 0)


if __name__ == "__main__":
    unittest.main()
