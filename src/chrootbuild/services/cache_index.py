from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, Field, create_engine, Session
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class CacheRecord(SQLModel, table=True):
    key: str = Field(primary_key=True)
    platform_id: str
    runtime_version: str
    builder_version: str
    archive: str
    sha256: str
    size_bytes: int
    created_at: datetime


class CacheIndex:
    """Side table of saved cache entries, used to verify archives before they are restored."""

    def __init__(self, cache_dir: Path):
        self.path = cache_dir / "index.db"
        self.engine = create_engine(f"sqlite:///{self.path}", connect_args={"check_same_thread": False})
        SQLModel.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, class_=Session, expire_on_commit=False)

    def get(self, key: str) -> Optional[CacheRecord]:
        with self.SessionLocal() as s:
            return s.get(CacheRecord, key)

    def put(self, record: CacheRecord) -> CacheRecord:
        with self.SessionLocal() as s:
            # replaces the previous record for the same key
            db_rec = s.merge(record)
            s.commit()
            return db_rec

    def delete(self, key: str) -> None:
        with self.SessionLocal() as s:
            rec = s.get(CacheRecord, key)
            if rec is not None:
                s.delete(rec)
                s.commit()

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)
