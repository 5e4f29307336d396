
"""Factory de sessão do SQLAlchemy 2."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

def create_session_factory(database_url: str):
    """Cria SessionFactory síncrona para SQLAlchemy 2.

    As chamadas partem de `asyncio.to_thread`, então o SQLite precisa aceitar
    conexões fora da thread que as criou.

    :param database_url: URL completa do banco (psycopg3 ou sqlite).
    :return: sessionmaker configurado.
    """
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, pool_pre_ping=True, future=True, connect_args=connect_args)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
