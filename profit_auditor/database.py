from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from profit_auditor.config import settings
from profit_auditor.models import Base

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Initialize database
def init_db():
    Base.metadata.create_all(bind=engine)


if __name__ == '__main__':
    init_db()
