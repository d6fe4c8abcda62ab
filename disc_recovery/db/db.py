import os
from sqlmodel import SQLModel, Session, create_engine

# Register tables on SQLModel.metadata
from disc_recovery.models import disc, drop_off, meetup_proposal, notification, recovery_event, recovery_message, reward_payment, user  # noqa: F401


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./disc_recovery.db")


def make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(DATABASE_URL)


def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
