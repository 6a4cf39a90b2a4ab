"""Engine and session factory for the payment tables.

Routes open one SessionLocal per request; tests rebind it to their own file.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from clinic_payments.config import get_settings

settings = get_settings()

if settings.database_url.startswith("sqlite"):
    # Requests run in FastAPI's threadpool, not the thread that opened the file.
    engine_options = {"connect_args": {"check_same_thread": False}}
else:
    engine_options = {"pool_pre_ping": True}

engine = create_engine(settings.database_url, echo=settings.database_echo, **engine_options)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()
