from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .activity import Activity  # noqa: F401
from .participant import Participant  # noqa: F401
from .round import LotteryMode, Round  # noqa: F401
from .winner import Winner  # noqa: F401

__all__ = [
    "Base",
    "Activity",
    "Participant",
    "LotteryMode",
    "Round",
    "Winner",
]
