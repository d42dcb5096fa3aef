import logging

from .settings import settings
from sqlmodel import SQLModel, create_engine, Session, select

from .models_db import Patients, Diagnoses

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    # managed providers hand out postgres:// which SQLAlchemy no longer accepts
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


database_url = normalize_database_url(settings.database_url)
connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

engine = create_engine(database_url, echo = False, connect_args = connect_args)

def init_db():
    SQLModel.metadata.create_all(engine)

def get_session():
    if settings.no_db:
        yield None
        return
    with Session(engine) as session:
        yield session

def check_connection(session: Session) -> bool:
    try:
        session.exec(select(Patients.id).limit(1)).first()
    except Exception:
        logger.exception("Database connection test failed")
        return False
    logger.info("Connected to database")
    return True
