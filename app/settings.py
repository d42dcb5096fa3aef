from pydantic import BaseModel
from pathlib import Path
from typing import Optional
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


class Settings(BaseModel):
    app_name: str = "medical-imaging"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # NO_DB=true keeps patients and diagnoses in process memory
    no_db: bool = _env_flag("NO_DB")

    root: Path = Path(__file__).resolve().parent.parent
    data_dir: Path = Path(os.getenv("DATA_DIR", str(root / "data")))
    uploads_dir: Path = data_dir / "uploads"
    database_url: str = os.getenv("DATABASE_URL", f"sqlite:///{(data_dir / 'app.db').as_posix()}")

    s3_bucket: str = os.getenv("S3_BUCKET", "oral_images")
    aws_region: Optional[str] = os.getenv("AWS_REGION")
    s3_endpoint_url: Optional[str] = os.getenv("S3_ENDPOINT_URL")
    storage_public_url: Optional[str] = os.getenv("STORAGE_PUBLIC_URL")

    cors_origins: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

settings = Settings()
settings.uploads_dir.mkdir(parents = True, exist_ok = True)
settings.data_dir.mkdir(parents = True, exist_ok = True)
