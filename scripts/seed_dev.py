import logging

from luckydraw.config import configure_logging
from luckydraw.db.engine import get_sessionmaker, make_engine
from luckydraw.models import Base, LotteryMode
from luckydraw.workflows import add_participant, configure_round, create_activity

logger = logging.getLogger("seed_dev")

DEPARTMENTS = ["Engineering", "Sales", "Finance", "Operations"]

ROUNDS = [
    ("Third prize: coffee voucher", 5, LotteryMode.WHEEL, 20_000),
    ("Second prize: headphones", 3, LotteryMode.SLOT_MACHINE, 30_000),
    ("First prize: tablet", 2, LotteryMode.HORSE_RACE, 45_000),
    ("Grand prize: weekend trip", 1, LotteryMode.DOUBLE_BALL, 60_000),
]


def main() -> None:
    """Reset the development database and load a sample activity."""
    configure_logging()
    engine = make_engine()

    # Drop and recreate all tables without foreign key checks so the reset
    # works regardless of existing rows.
    with engine.connect() as conn:
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        if conn.dialect.name == "sqlite":
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    with Session.begin() as session:
        activity = create_activity(
            session,
            "Year-end party",
            description="Sample activity for local development.",
        )
        for i in range(1, 21):
            add_participant(
                session,
                activity.id,
                f"Employee {i:02d}",
                employee_id=f"E{i:04d}",
                department=DEPARTMENTS[i % len(DEPARTMENTS)],
                email=f"employee{i:02d}@example.com",
            )
        for prize_name, winner_count, mode, duration_ms in ROUNDS:
            configure_round(
                session,
                activity.id,
                prize_name=prize_name,
                winner_count=winner_count,
                lottery_mode=mode,
                animation_duration_ms=duration_ms,
            )
        activity_id = activity.id

    logger.info(f"Development database seeded with activity {activity_id}.")


if __name__ == "__main__":
    main()
