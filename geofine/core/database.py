"""
Database connection and session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from geofine.core import config


def engine_options(url: str) -> dict:
    """Bounded waits for every storage call, per backend."""
    if url.startswith('sqlite'):
        return {
            'connect_args': {
                'check_same_thread': False,
                'timeout': config.DB_STATEMENT_TIMEOUT_MS / 1000,
            }
        }
    return {
        'pool_timeout': config.DB_POOL_TIMEOUT,
        'pool_pre_ping': True,
        'connect_args': {
            'options': f'-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}'
        },
    }


# Create engine
engine = create_engine(config.DATABASE_URL, echo=False, **engine_options(config.DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database - create tables"""
    from geofine.models import Base
    Base.metadata.create_all(bind=bind or engine)
