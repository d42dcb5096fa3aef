"""
Application-facing shapes for patients and diagnoses.

Rows in ``models_db`` are flat and snake_case; the API speaks camelCase and
nests the diagnosis scoring fields under ``results``. The helpers at the
bottom of this module convert between the two.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models_db import (
    Patients,
    Diagnoses,
    DiagnosisType,
    SeverityLevel,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------------

class Patient(ApiModel):
    id: str
    name: str
    history: str
    date: str
    index: str
    biopsy_confirmed: Optional[bool] = None
    doctor: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PatientCreate(ApiModel):
    name: str
    medical_history: Optional[list[str]] = None


class PatientUpdate(ApiModel):
    name: Optional[str] = None
    medical_history: Optional[list[str]] = None
    doctor: Optional[str] = None
    biopsy_confirmed: Optional[bool] = None


# ---------------------------------------------------------------------------
# Diagnoses
# ---------------------------------------------------------------------------

class Detection(ApiModel):
    class_name: str
    confidence: float
    bbox: list[float]


class DiagnosisScores(ApiModel):
    olp: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    olk: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ooml: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    opmd: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class DiagnosisResults(ApiModel):
    confidence: float = Field(..., ge=0.0, le=1.0)
    finding: str
    recommendation: str
    severity: Optional[SeverityLevel] = None
    report_recommendation: Optional[str] = None
    status_code: Optional[str] = None
    scores: Optional[DiagnosisScores] = None
    knowledge: Optional[str] = None


class DiagnosisCreate(ApiModel):
    patient_id: str
    type: DiagnosisType
    image_url: str
    results: DiagnosisResults
    annotated_image_url: Optional[str] = None
    detections: Optional[list[Detection]] = None


class Diagnosis(DiagnosisCreate):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProcessedImage(ApiModel):
    filename: str
    image_url: str
    file_path: str
    size: int


class Base64ImageRequest(BaseModel):
    image: str


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def patient_from_row(row: Patients) -> Patient:
    return Patient(
        id=row.patient_id,
        name=row.name,
        history=row.history,
        date=row.date,
        index=row.index,
        biopsy_confirmed=row.biopsy_confirmed or None,
        doctor=row.doctor or None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def patient_to_row(patient: Patient) -> Patients:
    return Patients(
        patient_id=patient.id,
        name=patient.name,
        history=patient.history,
        date=patient.date,
        index=patient.index,
        biopsy_confirmed=patient.biopsy_confirmed or None,
        doctor=patient.doctor or None,
    )


def diagnosis_from_row(row: Diagnoses) -> Diagnosis:
    scores = {
        "olp": row.olp_score,
        "olk": row.olk_score,
        "ooml": row.ooml_score,
        "opmd": row.opmd_score,
    }
    has_scores = any(v is not None for v in scores.values())
    return Diagnosis(
        id=str(row.id),
        patient_id=row.patient_id,
        type=row.type,
        image_url=row.image_url,
        results=DiagnosisResults(
            confidence=float(row.confidence),
            finding=row.finding,
            recommendation=row.recommendation,
            severity=row.severity,
            report_recommendation=row.report_recommendation,
            status_code=row.status_code,
            scores=DiagnosisScores(**scores) if has_scores else None,
            knowledge=row.knowledge,
        ),
        annotated_image_url=row.annotated_image_url,
        detections=[Detection.model_validate(d) for d in row.detections] if row.detections else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def diagnosis_to_row(data: DiagnosisCreate) -> Diagnoses:
    results = data.results
    scores = results.scores or DiagnosisScores()
    detections = None
    if data.detections is not None:
        detections = [d.model_dump() for d in data.detections]
    return Diagnoses(
        patient_id=data.patient_id,
        type=data.type,
        image_url=data.image_url,
        confidence=results.confidence,
        finding=results.finding,
        recommendation=results.recommendation,
        severity=results.severity,
        report_recommendation=results.report_recommendation,
        status_code=results.status_code,
        olp_score=scores.olp,
        olk_score=scores.olk,
        ooml_score=scores.ooml,
        opmd_score=scores.opmd,
        knowledge=results.knowledge,
        annotated_image_url=data.annotated_image_url,
        detections=detections,
    )
