"""
Conexión a base de datos
nautico/database.py

Engine + SessionLocal + Base declarativa. `get_db` es la dependency
que usan los routers de FastAPI.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from nautico.config import DATABASE_URL

Base = declarative_base()


def configurar_sqlite(engine):
    """
    pysqlite no emite BEGIN por su cuenta y rompe los SAVEPOINT.
    Se delega el control transaccional a SQLAlchemy (receta oficial).
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def crear_engine(url: str = DATABASE_URL, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return configurar_sqlite(create_engine(url, **kwargs))
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = crear_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
