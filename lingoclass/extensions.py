from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.orm import declarative_base, relationship, scoped_session, sessionmaker

Base = declarative_base()


class Database:
    """Engine, a request-scoped session and the schema vocabulary used by the models."""

    Model = Base
    Column = Column
    Integer = Integer
    String = String
    Text = Text
    Float = Float
    Numeric = Numeric
    Boolean = Boolean
    Date = Date
    DateTime = DateTime
    Enum = Enum
    JSON = JSON
    ForeignKey = ForeignKey
    UniqueConstraint = UniqueConstraint
    CheckConstraint = CheckConstraint
    Index = Index
    func = func
    # Plain functions would bind to the instance as methods.
    relationship = staticmethod(relationship)
    select = staticmethod(select)
    text = staticmethod(text)

    def __init__(self, database_url: str, **engine_kwargs: Any):
        if database_url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        self.engine = create_engine(database_url, **engine_kwargs)
        self.session = scoped_session(sessionmaker(bind=self.engine, autoflush=False))

    def Table(self, name: str, *columns: Any, **kwargs: Any) -> Table:
        """Association table registered on the models' metadata."""
        return Table(name, Base.metadata, *columns, **kwargs)

    def remove_session(self) -> None:
        self.session.remove()

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)


from lingoclass.config import settings

db = Database(settings.DATABASE_URL, echo=settings.SQL_ECHO)
