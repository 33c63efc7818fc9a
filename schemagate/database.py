from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from schemagate.config import settings


def _engine_options(url: str) -> dict:
    options = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": settings.DEBUG,  # Log SQL queries in debug mode
    }
    if url.startswith("sqlite"):
        # SQLite-specific settings
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return options


# Create SQLAlchemy engine (one pool for the catalog and every tenant schema)
engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Session factory for the catalog (companies, integration errors)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """
    FastAPI dependency for catalog database sessions.

    Yields a database session and ensures it's closed after use.
    Tenant-owned tables are reached through the tenant handle instead,
    see schemagate.dependencies.get_tenant_db.

    Usage:
        @app.get("/companies")
        def get_companies(db: Session = Depends(get_db)):
            return db.query(Tenant).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
