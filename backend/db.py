from sqlmodel import SQLModel, create_engine, Session

import models  # noqa: F401  (registers the tables on SQLModel.metadata)
from config import DATABASE_URL, get_settings
from focus_engine.store import FocusStore

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args)


def init_db():
    SQLModel.metadata.create_all(engine)


def new_session() -> Session:
    return Session(engine)


def get_store() -> FocusStore:
    return FocusStore(new_session, xp_per_level=get_settings().xp_per_level)
