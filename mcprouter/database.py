"""Async SQLite provider store — SQLAlchemy engine, ORM row and store implementation."""
import datetime
import json
import logging
import os
from pathlib import Path
from typing import List

from sqlalchemy import Column, DateTime, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .tools.store import ProviderStore
from .tools.models import ProviderDescriptor

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ProviderRow(Base):
    __tablename__ = "providers"

    id = Column(String(128), primary_key=True)
    payload_json = Column(Text, nullable=False, default="{}")
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)


class SqlProviderStore(ProviderStore):
    """One row per provider, the descriptor serialized as JSON."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{self.db_path}", echo=False)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self._initialized = False

    async def init_db(self):
        """Create tables on first use."""
        if self._initialized:
            return
        if self.db_path.parent and str(self.db_path.parent) not in ("", "."):
            os.makedirs(self.db_path.parent, exist_ok=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.info(f"Registry database initialized at {self.db_path}")

    async def load_all(self) -> List[ProviderDescriptor]:
        await self.init_db()
        async with self.session_factory() as db:
            result = await db.execute(select(ProviderRow))
            rows = result.scalars().all()
        descriptors = []
        for row in rows:
            try:
                descriptors.append(ProviderDescriptor.from_dict(json.loads(row.payload_json)))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid provider row {row.id!r}: {e}")
        return descriptors

    async def upsert(self, descriptor: ProviderDescriptor):
        await self.init_db()
        payload = json.dumps(descriptor.to_dict(), ensure_ascii=False)
        async with self.session_factory() as db:
            row = await db.get(ProviderRow, descriptor.id)
            if row is None:
                db.add(ProviderRow(id=descriptor.id, payload_json=payload))
            else:
                row.payload_json = payload
            await db.commit()

    async def delete(self, provider_id: str):
        await self.init_db()
        async with self.session_factory() as db:
            row = await db.get(ProviderRow, provider_id)
            if row is not None:
                await db.delete(row)
                await db.commit()

    async def close(self):
        await self.engine.dispose()
