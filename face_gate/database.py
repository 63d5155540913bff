from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import JSON, DateTime, Integer, String, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .exceptions import PersistError
from .gallery import EnrollmentRecord, Identity, StoredEnrollment
from .logger import setup_logger

AUTO_IDENTITY_PREFIX = "user_"


class Base(DeclarativeBase):
    pass


class FaceEnrollment(Base):
    __tablename__ = "faces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), index=True)
    identity_kind: Mapped[str] = mapped_column(String(8), default="str")
    descriptor: Mapped[list] = mapped_column(JSON)
    dimension: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def typed_identity(self) -> Identity:
        return int(self.identity) if self.identity_kind == "int" else self.identity

    def to_stored(self) -> StoredEnrollment:
        return StoredEnrollment(id=self.id, identity=self.typed_identity, descriptor=list(self.descriptor))


def _normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return f"postgresql+psycopg://{database_url[len('postgres://'):]}"
    return database_url


def create_db_engine(database_url: str, **kwargs) -> Engine:
    url = _normalize_database_url(database_url)
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, future=True, pool_pre_ping=True, **kwargs)


class SqlEnrollmentRepository:
    """Enrollment rows persisted through SQLAlchemy, one row per embedding."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)
        self.logger = setup_logger(self.__class__.__name__)

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistError(f"Could not create enrollment schema: {exc}") from exc

    def list_faces(self) -> List[StoredEnrollment]:
        try:
            with self.session_factory() as session:
                rows = session.scalars(select(FaceEnrollment).order_by(FaceEnrollment.id)).all()
                return [row.to_stored() for row in rows]
        except SQLAlchemyError as exc:
            raise PersistError(f"Could not read enrollments: {exc}") from exc

    def list_enrollments(self) -> List[EnrollmentRecord]:
        grouped: Dict[Identity, List[List[float]]] = {}
        for face in self.list_faces():
            grouped.setdefault(face.identity, []).append(face.descriptor)
        return [EnrollmentRecord.build(identity, descriptors) for identity, descriptors in grouped.items()]

    def save_enrollment(self, identity: Optional[Identity], embedding: np.ndarray) -> StoredEnrollment:
        descriptor = [float(v) for v in np.asarray(embedding).reshape(-1)]
        kind = "int" if isinstance(identity, int) and not isinstance(identity, bool) else "str"
        try:
            with self.session_factory() as session:
                row = FaceEnrollment(
                    identity="" if identity is None else str(identity),
                    identity_kind=kind,
                    descriptor=descriptor,
                    dimension=len(descriptor),
                )
                session.add(row)
                session.flush()
                if identity is None:
                    row.identity = f"{AUTO_IDENTITY_PREFIX}{row.id}"
                session.commit()
                stored = row.to_stored()
        except SQLAlchemyError as exc:
            raise PersistError(f"Could not save enrollment: {exc}") from exc

        self.logger.info("Persisted face row %d for %r", stored.id, stored.identity)
        return stored
