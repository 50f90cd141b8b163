# consent_app/settings.py
from pydantic import BaseModel
import os

class Settings(BaseModel):
    # SQLAlchemy URL; every mutating call commits before it returns.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./consent.db")

    # Where uploaded blobs are written (content addressed by CID).
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "./uploads")
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # Session tokens (HS256). Change this outside of local demos.
    SIGN_KEY: str = os.getenv("CONSENT_SIGN_KEY", "dev-secret-key")
    SESSION_TTL_MINUTES: int = int(os.getenv("SESSION_TTL_MINUTES", "720"))

    # Comma-separated list of allowed browser origins.
    CORS_ALLOW_ORIGINS: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "3001"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Reject access requests naming a student that was never registered.
    # Set to false to defer that check until the student acts on the request.
    VALIDATE_STUDENT_ON_REQUEST: bool = (
        os.getenv("VALIDATE_STUDENT_ON_REQUEST", "true").lower() == "true"
    )

    # Longest consent window an organization may ask for (default ten years).
    MAX_DURATION_HOURS: int = int(os.getenv("MAX_DURATION_HOURS", str(24 * 365 * 10)))

    # Principal addresses are numeric strings allocated above this value.
    FIRST_ADDRESS: int = int(os.getenv("FIRST_ADDRESS", "100000"))

    @property
    def cors_origins(self):
        return [o.strip() for o in self.CORS_ALLOW_ORIGINS.split(",") if o.strip()]

settings = Settings()
