# consent_app/db.py
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from consent_app.settings import settings

def make_engine(url: str):
    return create_engine(url, connect_args={"check_same_thread": False} if "sqlite" in url else {})

engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def init_db(bind=None):
    import consent_app.models as models
    Base.metadata.create_all(bind=bind or engine)

@contextmanager
def session_scope(db=None):
    """
    Commit on success, roll back on any error. A passed-in session stays open
    for the caller; otherwise a fresh one is opened and closed here.
    """
    owned = db is None
    if owned:
        db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        if owned:
            db.close()
