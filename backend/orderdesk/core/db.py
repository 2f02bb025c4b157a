from sqlmodel import Session, SQLModel, create_engine

from orderdesk.core.config import settings

connect_args = (
    {"check_same_thread": False}
    if settings.SQLALCHEMY_DATABASE_URI.startswith("sqlite")
    else {}
)

engine = create_engine(
    settings.SQLALCHEMY_DATABASE_URI,
    connect_args=connect_args,
    pool_pre_ping=True,
)


def init_db(session: Session) -> None:
    """Create tables and document counters for local SQLite databases."""
    # Postgres schemas and counters are managed by Alembic migrations
    bind = session.get_bind()
    if bind.dialect.name == "sqlite":
        import orderdesk.models  # noqa: F401
        from orderdesk.models.documents import DOCUMENT_NUMBER_PREFIXES, DocumentCounter

        SQLModel.metadata.create_all(bind)
        for counter_name in DOCUMENT_NUMBER_PREFIXES:
            if session.get(DocumentCounter, counter_name) is None:
                session.add(DocumentCounter(counter_name=counter_name, next_number=1))
        session.commit()
