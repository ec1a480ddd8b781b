"""Database session management with connection pooling"""

from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from anchor_gateway.infrastructure.database.models import Base


def engine_options(database_url: str, statement_timeout: Optional[float] = None) -> Dict[str, Any]:
    """
    Keyword arguments for create_engine.

    ``statement_timeout`` (seconds) bounds each statement. On Postgres it is
    the server-side statement_timeout plus the pool checkout timeout; on
    SQLite it is the lock wait.
    """
    if database_url.startswith("sqlite"):
        connect_args: Dict[str, Any] = {"check_same_thread": False}
        if statement_timeout:
            connect_args["timeout"] = statement_timeout
        return {"connect_args": connect_args}

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    options: Dict[str, Any] = {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }
    if statement_timeout:
        options["pool_timeout"] = statement_timeout
        options["connect_args"] = {"options": f"-c statement_timeout={int(statement_timeout * 1000)}"}
    return options


def build_engine(database_url: str, statement_timeout: Optional[float] = None) -> Engine:
    return create_engine(database_url, **engine_options(database_url, statement_timeout))


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine) -> None:
    """Create tables that do not exist yet"""
    Base.metadata.create_all(bind=bind)


def get_db(request: Request) -> Session:
    """Dependency injection for database sessions from the app's session factory"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
