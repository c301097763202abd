from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase

from luckydraw.db.metadata import metadata_obj

# Primary and foreign keys: BIGINT on server databases, INTEGER on SQLite so
# the rowid alias still autoincrements.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Declarative base sharing the constraint naming convention."""

    metadata = metadata_obj
