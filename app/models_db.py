from sqlmodel import SQLModel, Field, Column, JSON
from sqlalchemy import CheckConstraint
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiagnosisType(str, Enum):
    gastritis = "gastritis"
    oral = "oral"


class SeverityLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class StatusCode(str, Enum):
    OPMD_POSITIVE = "OPMD_POSITIVE"
    OPMD_SUSPECTED = "OPMD_SUSPECTED"
    OPMD_NEGATIVE = "OPMD_NEGATIVE"
    OLK_POSITIVE = "OLK_POSITIVE"
    OLP_POSITIVE = "OLP_POSITIVE"
    OSF_POSITIVE = "OSF_POSITIVE"


SCORE_COLUMNS = ("olp_score", "olk_score", "ooml_score", "opmd_score")


def _unit_interval(column: str, nullable: bool = True) -> CheckConstraint:
    check = f"{column} >= 0 AND {column} <= 1"
    if nullable:
        check = f"{column} IS NULL OR ({check})"
    return CheckConstraint(check, name = f"ck_diagnoses_{column}_range")


class Patients(SQLModel, table=True):
    __tablename__ = "patients"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key = True)
    patient_id: str = Field(max_length = 255, unique = True, index = True)
    name: str = Field(max_length = 255, index = True)
    history: str
    date: str = Field(max_length = 100)
    index: str = Field(max_length = 255)
    biopsy_confirmed: Optional[bool] = None
    doctor: Optional[str] = Field(default=None, max_length = 255)
    created_at: datetime = Field(default_factory=utcnow)
    # stands in for the update_updated_at_column trigger
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


class Diagnoses(SQLModel, table=True):
    __tablename__ = "diagnoses"
    __table_args__ = (
        _unit_interval("confidence", nullable = False),
        *(_unit_interval(c) for c in SCORE_COLUMNS),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key = True)
    patient_id: str = Field(max_length = 255, index = True)
    type: DiagnosisType = Field(index = True)
    image_url: str

    confidence: float
    finding: str
    recommendation: str
    severity: Optional[SeverityLevel] = None
    report_recommendation: Optional[str] = None
    status_code: Optional[str] = Field(default=None, max_length = 100)

    olp_score: Optional[float] = None   # oral lichen planus
    olk_score: Optional[float] = None   # oral leukoplakia
    ooml_score: Optional[float] = None  # legacy
    opmd_score: Optional[float] = None  # overall OPMD

    knowledge: Optional[str] = None
    annotated_image_url: Optional[str] = None
    detections: Optional[list[dict]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, index = True)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
