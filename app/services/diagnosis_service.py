import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlmodel import Session, select

from ..settings import settings
from ..models_db import Diagnoses, DiagnosisType
from ..schemas import Diagnosis, DiagnosisCreate, diagnosis_from_row, diagnosis_to_row

memory_diagnoses: dict[str, Diagnosis] = {}


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Diagnosis not found")


def _parse_id(diagnosis_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(diagnosis_id)
    except ValueError:
        return None


class DiagnosisService:
    def __init__(self, session: Optional[Session] = None, no_db: Optional[bool] = None):
        self.session = session
        self.no_db = settings.no_db if no_db is None else no_db

    def _get_row(self, diagnosis_id: str) -> Diagnoses:
        key = _parse_id(diagnosis_id)
        row = self.session.get(Diagnoses, key) if key is not None else None
        if row is None:
            raise _not_found()
        return row

    def create_diagnosis(self, data: DiagnosisCreate) -> Diagnosis:
        if self.no_db:
            now = datetime.now(timezone.utc)
            diagnosis = Diagnosis(
                **data.model_dump(),
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
            )
            memory_diagnoses[diagnosis.id] = diagnosis
            return diagnosis

        row = diagnosis_to_row(data)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return diagnosis_from_row(row)

    def get_diagnosis(self, diagnosis_id: str) -> Diagnosis:
        if self.no_db:
            diagnosis = memory_diagnoses.get(diagnosis_id)
            if diagnosis is None:
                raise _not_found()
            return diagnosis
        return diagnosis_from_row(self._get_row(diagnosis_id))

    def list_diagnoses(
        self,
        patient_id: Optional[str] = None,
        type: Optional[DiagnosisType] = None,
    ) -> list[Diagnosis]:
        """Newest first, optionally narrowed to one patient and/or one screening type."""
        if self.no_db:
            items = [
                d for d in memory_diagnoses.values()
                if (patient_id is None or d.patient_id == patient_id)
                and (type is None or d.type == type)
            ]
            return sorted(items, key=lambda d: d.created_at, reverse=True)

        query = select(Diagnoses)
        if patient_id is not None:
            query = query.where(Diagnoses.patient_id == patient_id)
        if type is not None:
            query = query.where(Diagnoses.type == type)
        rows = self.session.exec(query.order_by(Diagnoses.created_at.desc())).all()
        return [diagnosis_from_row(row) for row in rows]

    def delete_diagnosis(self, diagnosis_id: str) -> None:
        if self.no_db:
            if memory_diagnoses.pop(diagnosis_id, None) is None:
                raise _not_found()
            return

        row = self._get_row(diagnosis_id)
        self.session.delete(row)
        self.session.commit()
