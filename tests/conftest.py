import asyncio
import itertools
import os
import tempfile

# must be set before app.settings is imported
os.environ["NO_DB"] = "true"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="medimg-test-"))

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from app import main
from app.db import get_session
from app.services import patient_service, diagnosis_service
from app.services.patient_service import PatientService
from app.services.diagnosis_service import DiagnosisService
from app.services.storage import BucketStorage
from app.services.upload_service import UploadService


class FakeS3Client:
    def __init__(self):
        self.presigned = []
        self.deleted = []
        self.delete_error = None
        self.presign_error = None

    def generate_presigned_url(self, operation, Params, ExpiresIn, HttpMethod):
        if self.presign_error is not None:
            raise self.presign_error
        self.presigned.append((operation, Params))
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?signature=x"

    def delete_object(self, Bucket, Key):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append((Bucket, Key))


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeHttp:
    def __init__(self):
        self.puts = []
        self.status_code = 200

    def put(self, url, data, headers):
        try:
            asyncio.get_running_loop()
            on_event_loop = True
        except RuntimeError:
            on_event_loop = False
        self.puts.append({"url": url, "data": data, "headers": headers, "on_event_loop": on_event_loop})
        return FakeResponse(self.status_code)


def client_error(code="NoSuchBucket", operation="DeleteObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture(autouse=True)
def clear_memory_store():
    patient_service.memory_patients.clear()
    diagnosis_service.memory_diagnoses.clear()
    yield
    patient_service.memory_patients.clear()
    diagnosis_service.memory_diagnoses.clear()


@pytest.fixture(autouse=True)
def ticking_clock(monkeypatch):
    # distinct patient ids within one test
    counter = itertools.count(1_700_000_000_000)
    monkeypatch.setattr(patient_service, "_now_ms", lambda: next(counter))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def s3():
    return FakeS3Client()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def storage(s3, http):
    return BucketStorage(s3, "oral_images", public_base_url="https://cdn.test/oral_images", http=http)


@pytest.fixture
def upload_service(tmp_path, storage):
    return UploadService(tmp_path / "uploads", storage)


@pytest.fixture
def memory_client(upload_service):
    main.app.dependency_overrides[get_session] = lambda: None
    main.app.dependency_overrides[main.get_patient_service] = lambda: PatientService(no_db=True)
    main.app.dependency_overrides[main.get_diagnosis_service] = lambda: DiagnosisService(no_db=True)
    main.app.dependency_overrides[main.get_upload_service] = lambda: upload_service
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


@pytest.fixture
def db_client(session, upload_service):
    main.app.dependency_overrides[get_session] = lambda: session
    main.app.dependency_overrides[main.get_patient_service] = lambda: PatientService(session, no_db=False)
    main.app.dependency_overrides[main.get_diagnosis_service] = lambda: DiagnosisService(session, no_db=False)
    main.app.dependency_overrides[main.get_upload_service] = lambda: upload_service
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()
