from __future__ import annotations

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()
migrate = Migrate()


def _sqlite_disable_implicit_begin(dbapi_connection, _connection_record) -> None:
    # pysqlite opens deferred transactions on its own; the begin hook below takes over.
    dbapi_connection.isolation_level = None


def _sqlite_begin_immediate(connection) -> None:
    # Writers queue on the busy timeout instead of failing on a SHARED -> RESERVED upgrade.
    connection.exec_driver_sql("BEGIN IMMEDIATE")


def configure_sqlite_locking(engine: Engine) -> None:
    """Serialize writers on file-backed SQLite so counter upserts never interleave.

    In-memory databases share a single connection and keep pysqlite's default.
    """
    if engine.dialect.name != "sqlite" or engine.url.database in (None, "", ":memory:"):
        return
    if event.contains(engine, "begin", _sqlite_begin_immediate):
        return
    event.listen(engine, "connect", _sqlite_disable_implicit_begin)
    event.listen(engine, "begin", _sqlite_begin_immediate)
