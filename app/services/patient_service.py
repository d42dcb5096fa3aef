import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException
from sqlmodel import Session, select

from ..settings import settings
from ..models_db import Patients, utcnow
from ..schemas import Patient, PatientCreate, PatientUpdate, patient_from_row, patient_to_row

# NO_DB mode storage, keyed by patient id. Lost on restart.
memory_patients: dict[str, Patient] = {}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Patient not found")


class PatientService:
    def __init__(self, session: Optional[Session] = None, no_db: Optional[bool] = None):
        self.session = session
        self.no_db = settings.no_db if no_db is None else no_db

    def _find_row(self, patient_id: str) -> Optional[Patients]:
        return self.session.exec(
            select(Patients).where(Patients.patient_id == patient_id)
        ).first()

    def get_all_patients(self) -> list[Patient]:
        if self.no_db:
            return sorted(
                memory_patients.values(),
                key=lambda p: p.created_at or datetime.now(timezone.utc),
                reverse=True,
            )

        rows = self.session.exec(
            select(Patients).order_by(Patients.created_at.desc())
        ).all()
        return [patient_from_row(row) for row in rows]

    def get_patient_by_id(self, patient_id: str) -> Patient:
        if self.no_db:
            patient = memory_patients.get(patient_id)
            if patient is None:
                raise _not_found()
            return patient

        row = self._find_row(patient_id)
        if row is None:
            raise _not_found()
        return patient_from_row(row)

    def create_patient(self, data: PatientCreate) -> Patient:
        now_ms = _now_ms()
        now = utcnow()
        patient = Patient(
            id=f"patient-{now_ms}",
            name=data.name,
            history=", ".join(data.medical_history or []),
            date=now.date().isoformat(),
            index=str(now_ms),
            biopsy_confirmed=False,
            doctor="Unknown",
            created_at=now,
            updated_at=now,
        )

        if self.no_db:
            memory_patients[patient.id] = patient
            return patient

        row = patient_to_row(patient)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return patient_from_row(row)

    def update_patient(self, patient_id: str, data: PatientUpdate) -> Patient:
        changes = {}
        if data.name:
            changes["name"] = data.name
        if data.medical_history:
            changes["history"] = ", ".join(data.medical_history)
        if data.doctor:
            changes["doctor"] = data.doctor
        if data.biopsy_confirmed is not None:
            changes["biopsy_confirmed"] = data.biopsy_confirmed

        if self.no_db:
            existing = memory_patients.get(patient_id)
            if existing is None:
                raise _not_found()
            updated = existing.model_copy(update={**changes, "updated_at": utcnow()})
            memory_patients[patient_id] = updated
            return updated

        row = self._find_row(patient_id)
        if row is None:
            raise _not_found()
        if "biopsy_confirmed" in changes:
            # rows store a false flag as NULL, same as patient_to_row
            changes["biopsy_confirmed"] = changes["biopsy_confirmed"] or None
        for key, value in changes.items():
            setattr(row, key, value)
        # onupdate only fires when a column changed
        row.updated_at = utcnow()
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return patient_from_row(row)

    def delete_patient(self, patient_id: str) -> None:
        if self.no_db:
            if memory_patients.pop(patient_id, None) is None:
                raise _not_found()
            return

        row = self._find_row(patient_id)
        if row is None:
            raise _not_found()
        self.session.delete(row)
        self.session.commit()
