from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from jobengine.backend.abstract import AbstractBackend
from jobengine.backend.sql import SQLBackend
from jobengine.config import config


def get_backend(url: Optional[str] = None, initialize: bool = True) -> AbstractBackend:
    """Get the backend implementation based on configuration."""
    if config.db.backend == "sqlalchemy":
        return _get_sql_backend(url or config.db.url, initialize)
    else:
        raise ValueError(f"Unsupported backend: {config.db.backend}")


def _get_sql_backend(url: str, initialize: bool) -> SQLBackend:
    """Get a SQLAlchemy backend implementation."""
    if url.startswith("sqlite"):
        engine_kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live on a single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=config.db.echo, **engine_kwargs)
    else:
        engine = create_engine(url, echo=config.db.echo, pool_pre_ping=True)

    backend = SQLBackend(sqlalchemy_engine=engine)
    if initialize:
        backend.initialize()
    return backend
