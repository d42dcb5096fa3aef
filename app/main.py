from contextlib import asynccontextmanager
import uuid
import logging
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, UploadFile, File, Depends, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from .settings import settings
from .db import init_db, get_session, check_connection
from .models_db import DiagnosisType
from .schemas import (
    Patient,
    PatientCreate,
    PatientUpdate,
    Diagnosis,
    DiagnosisCreate,
    ProcessedImage,
    Base64ImageRequest,
)

from .services.patient_service import PatientService
from .services.diagnosis_service import DiagnosisService
from .services.upload_service import UploadService
from .services.storage import get_storage

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # on_startup
    if settings.no_db:
        logger.warning("NO_DB=true, patients and diagnoses are kept in memory only")
    else:
        init_db()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount("/uploads", StaticFiles(directory=str(settings.uploads_dir), check_dir=False), name="uploads")


def get_patient_service(session: Optional[Session] = Depends(get_session)) -> PatientService:
    return PatientService(session)

def get_diagnosis_service(session: Optional[Session] = Depends(get_session)) -> DiagnosisService:
    return DiagnosisService(session)

def get_upload_service() -> UploadService:
    return UploadService(settings.uploads_dir, get_storage())


@app.get("/api/health")
def health(session: Optional[Session] = Depends(get_session)):
    if session is None:
        return {"backend": "running", "database": "disabled"}
    return {"backend": "running", "database": "connected" if check_connection(session) else "unavailable"}


# ---------------------------
# Patients
# ---------------------------
@app.get("/api/patients", response_model=list[Patient])
def list_patients(service: PatientService = Depends(get_patient_service)):
    return service.get_all_patients()

@app.get("/api/patients/{patient_id}", response_model=Patient)
def get_patient(patient_id: str, service: PatientService = Depends(get_patient_service)):
    return service.get_patient_by_id(patient_id)

@app.post("/api/patients", response_model=Patient, status_code=201)
def create_patient(data: PatientCreate, service: PatientService = Depends(get_patient_service)):
    patient = service.create_patient(data)
    logger.info("Created patient %s", patient.id)
    return patient

@app.put("/api/patients/{patient_id}", response_model=Patient)
def update_patient(patient_id: str, data: PatientUpdate, service: PatientService = Depends(get_patient_service)):
    return service.update_patient(patient_id, data)

@app.delete("/api/patients/{patient_id}", status_code=204)
def delete_patient(patient_id: str, service: PatientService = Depends(get_patient_service)):
    service.delete_patient(patient_id)
    logger.info("Deleted patient %s", patient_id)
    return Response(status_code=204)

@app.get("/api/patients/{patient_id}/diagnoses", response_model=list[Diagnosis])
def list_patient_diagnoses(patient_id: str, service: DiagnosisService = Depends(get_diagnosis_service)):
    return service.list_diagnoses(patient_id=patient_id)


# ---------------------------
# Diagnoses
# ---------------------------
@app.get("/api/diagnoses", response_model=list[Diagnosis])
def list_diagnoses(
    patientId: Optional[str] = None,
    type: Optional[DiagnosisType] = None,
    service: DiagnosisService = Depends(get_diagnosis_service),
):
    return service.list_diagnoses(patient_id=patientId, type=type)

@app.get("/api/diagnoses/{diagnosis_id}", response_model=Diagnosis)
def get_diagnosis(diagnosis_id: str, service: DiagnosisService = Depends(get_diagnosis_service)):
    return service.get_diagnosis(diagnosis_id)

@app.post("/api/diagnoses", response_model=Diagnosis, status_code=201)
def create_diagnosis(data: DiagnosisCreate, service: DiagnosisService = Depends(get_diagnosis_service)):
    diagnosis = service.create_diagnosis(data)
    logger.info("Stored %s diagnosis %s for patient %s", diagnosis.type.value, diagnosis.id, diagnosis.patient_id)
    return diagnosis

@app.delete("/api/diagnoses/{diagnosis_id}", status_code=204)
def delete_diagnosis(diagnosis_id: str, service: DiagnosisService = Depends(get_diagnosis_service)):
    service.delete_diagnosis(diagnosis_id)
    return Response(status_code=204)


# ---------------------------
# Uploads
# ---------------------------
@app.post("/api/upload", response_model=ProcessedImage)
async def upload_image(
    image: UploadFile = File(...),
    service: UploadService = Depends(get_upload_service),
):
    raw = await image.read()

    # Stage on local disk first, the bucket copy mirrors it
    suffix = Path(image.filename or "").suffix.lower() or ".jpg"
    filename = f"{uuid.uuid4().hex}{suffix}"

    def stage_and_mirror() -> ProcessedImage:
        service.local_path(filename).write_bytes(raw)
        return service.process_image(filename, size=len(raw))

    # disk write and storage PUT block, keep them off the event loop
    return await run_in_threadpool(stage_and_mirror)

@app.post("/api/upload/base64", response_model=ProcessedImage)
def upload_base64_image(body: Base64ImageRequest, service: UploadService = Depends(get_upload_service)):
    return service.save_base64_image(body.image)

@app.delete("/api/upload/{filename}", status_code=204)
def delete_uploaded_image(filename: str, service: UploadService = Depends(get_upload_service)):
    service.delete_image(filename)
    return Response(status_code=204)
