# backend/consultation_ai/db/consultation_store.py
"""SQLite-backed consultation store.

Each consultation is one row: an internal autoincrement key, the unique
external ``consultation_id``, a few denormalized columns used for filtering,
sorting and statistics, and the full camelCase JSON document.
"""

import json
import logging
import math
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from consultation_ai.core.errors import DuplicateIdError, NotFoundError, PersistenceError, ValidationError
from consultation_ai.models import Consultation, ConsultationPage, ConsultationStats, Pagination, Prescription
from consultation_ai.models.consultation import utc_now

logger = logging.getLogger(__name__)

INIT_SQL = """
CREATE TABLE IF NOT EXISTS consultations(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  consultation_id TEXT NOT NULL UNIQUE,
  patient_name TEXT,
  patient_id TEXT,
  confidence_score REAL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  document TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_consultations_created_at ON consultations(created_at);
CREATE INDEX IF NOT EXISTS idx_consultations_patient_id ON consultations(patient_id);
"""

SORT_COLUMNS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "consultationId": "consultation_id",
    "patientName": "patient_name",
    "patientInfo.name": "patient_name",
    "confidenceScore": "confidence_score",
    "analysisMetadata.confidenceScore": "confidence_score",
}

IMMUTABLE_FIELDS = {"consultationId", "consultation_id", "createdAt", "created_at", "_id", "id"}

TREND_WINDOW = timedelta(days=30)


def to_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so that string comparison matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _date_range_clause(start_date: Optional[datetime], end_date: Optional[datetime]) -> Tuple[List[str], List[Any]]:
    clauses, params = [], []
    if start_date is not None:
        clauses.append("created_at >= ?")
        params.append(to_timestamp(start_date))
    if end_date is not None:
        clauses.append("created_at <= ?")
        params.append(to_timestamp(end_date))
    return clauses, params


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


def _where(clauses: List[str]) -> str:
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


class ConsultationStore:
    def __init__(self, db_path: str, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout

    @asynccontextmanager
    async def _connect(self):
        try:
            async with aiosqlite.connect(self.db_path, timeout=self.timeout) as db:
                db.row_factory = aiosqlite.Row
                # SQLite LIKE and lower() only fold ASCII
                await db.create_function("casefold", 1, _casefold, deterministic=True)
                yield db
        except sqlite3.Error as e:
            raise PersistenceError(f"Storage failure: {e}") from e

    async def init(self) -> None:
        async with self._connect() as db:
            await db.executescript(INIT_SQL)
            await db.commit()

    @staticmethod
    def _row_values(consultation: Consultation) -> Tuple[Any, ...]:
        metadata = consultation.analysis_metadata
        return (
            consultation.patient_info.name,
            consultation.patient_info.patient_id,
            metadata.confidence_score if metadata else None,
            to_timestamp(consultation.created_at),
            to_timestamp(consultation.updated_at),
            json.dumps(consultation.to_document()),
        )

    async def create(self, consultation: Consultation) -> Consultation:
        now = utc_now()
        stored = consultation.model_copy(update={"created_at": now, "updated_at": now})
        async with self._connect() as db:
            try:
                await db.execute(
                    "INSERT INTO consultations(consultation_id, patient_name, patient_id, confidence_score,"
                    " created_at, updated_at, document) VALUES(?,?,?,?,?,?,?)",
                    (stored.consultation_id, *self._row_values(stored)),
                )
                await db.commit()
            except sqlite3.IntegrityError as e:
                raise DuplicateIdError(stored.consultation_id) from e
        logger.info("Consultation saved with ID: %s", stored.consultation_id)
        return stored

    async def _fetch(self, db: aiosqlite.Connection, consultation_id: str) -> Optional[Consultation]:
        cur = await db.execute("SELECT document FROM consultations WHERE consultation_id=?", (consultation_id,))
        row = await cur.fetchone()
        if row is None:
            return None
        return Consultation.model_validate_json(row["document"])

    async def _write(self, db: aiosqlite.Connection, consultation: Consultation) -> None:
        await db.execute(
            "UPDATE consultations SET patient_name=?, patient_id=?, confidence_score=?, created_at=?,"
            " updated_at=?, document=? WHERE consultation_id=?",
            (*self._row_values(consultation), consultation.consultation_id),
        )

    async def get_by_id(self, consultation_id: str) -> Consultation:
        async with self._connect() as db:
            consultation = await self._fetch(db, consultation_id)
        if consultation is None:
            raise NotFoundError(consultation_id)
        return consultation

    async def list(
        self,
        patient_name: Optional[str] = None,
        patient_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 10,
    ) -> ConsultationPage:
        """One page of consultations, newest first by default.

        The transcript is left out of each listed document to keep pages small.
        """
        if page < 1 or page_size < 1:
            raise ValidationError("page and page size must be positive")
        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(f"Unsupported sort field: {sort_by}")
        direction = "ASC" if sort_order.lower() == "asc" else "DESC"

        clauses, params = _date_range_clause(start_date, end_date)
        if patient_name:
            clauses.append("instr(casefold(patient_name), ?) > 0")
            params.append(patient_name.casefold())
        if patient_id:
            clauses.append("patient_id = ?")
            params.append(patient_id)
        where = _where(clauses)

        async with self._connect() as db:
            cur = await db.execute(f"SELECT COUNT(*) AS n FROM consultations{where}", params)
            total = (await cur.fetchone())["n"]
            cur = await db.execute(
                f"SELECT document FROM consultations{where} ORDER BY {column} {direction}, id {direction}"
                " LIMIT ? OFFSET ?",
                (*params, page_size, (page - 1) * page_size),
            )
            rows = await cur.fetchall()

        consultations = []
        for row in rows:
            document = json.loads(row["document"])
            document.pop("transcript", None)
            consultations.append(document)

        logger.info("Retrieved %d consultations (page %d)", len(consultations), page)
        return ConsultationPage(
            consultations=consultations,
            pagination=Pagination(
                current=page,
                total=math.ceil(total / page_size),
                count=len(consultations),
                total_records=total,
            ),
        )

    async def update(self, consultation_id: str, fields: Dict[str, Any]) -> Consultation:
        protected = IMMUTABLE_FIELDS.intersection(fields)
        if protected:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(protected))}")

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            current = await self._fetch(db, consultation_id)
            if current is None:
                await db.rollback()
                raise NotFoundError(consultation_id)
            if (
                current.analysis_metadata is not None
                and "transcript" in fields
                and fields["transcript"] != current.transcript
            ):
                await db.rollback()
                raise ValidationError("Transcript cannot be changed after analysis")

            document = current.to_document()
            document.update(fields)
            document["updatedAt"] = utc_now()
            try:
                updated = Consultation.model_validate(document)
            except PydanticValidationError as e:
                await db.rollback()
                raise ValidationError(f"Invalid consultation update: {e}") from e

            await self._write(db, updated)
            await db.commit()

        logger.info("Updated consultation: %s", consultation_id)
        return updated

    async def delete(self, consultation_id: str) -> str:
        async with self._connect() as db:
            cur = await db.execute("DELETE FROM consultations WHERE consultation_id=?", (consultation_id,))
            await db.commit()
            deleted = cur.rowcount
        if not deleted:
            raise NotFoundError(consultation_id)
        logger.info("Deleted consultation: %s", consultation_id)
        return consultation_id

    async def append_prescription(self, consultation_id: str, prescription: Prescription) -> bool:
        """Link a prescription to a consultation. Failures are logged, never raised."""
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                current = await self._fetch(db, consultation_id)
                if current is None:
                    await db.rollback()
                    logger.warning("Cannot link prescription: consultation %s not found", consultation_id)
                    return False
                updated = current.model_copy(
                    update={"prescriptions": [*current.prescriptions, prescription], "updated_at": utc_now()}
                )
                await self._write(db, updated)
                await db.commit()
        except (PersistenceError, PydanticValidationError):
            logger.exception("Error saving prescription to consultation %s", consultation_id)
            return False

        logger.info("Prescription added to consultation %s", consultation_id)
        return True

    async def aggregate_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> ConsultationStats:
        clauses, params = _date_range_clause(start_date, end_date)
        where = _where(clauses)
        since = to_timestamp((now or utc_now()) - TREND_WINDOW)

        async with self._connect() as db:
            cur = await db.execute(
                "SELECT COUNT(*) AS total, AVG(confidence_score) AS avg_score,"
                f" COUNT(DISTINCT patient_id) AS patients FROM consultations{where}",
                params,
            )
            totals = await cur.fetchone()
            cur = await db.execute(
                "SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS n FROM consultations"
                f"{_where([*clauses, 'created_at >= ?'])} GROUP BY day ORDER BY day",
                (*params, since),
            )
            trend = await cur.fetchall()

        return ConsultationStats(
            total_consultations=totals["total"],
            avg_confidence_score=totals["avg_score"] or 0.0,
            unique_patients=totals["patients"],
            daily_trend=[{"date": row["day"], "count": row["n"]} for row in trend],
        )
