"""Application settings and validation."""

import os
from decimal import Decimal
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    FRONTEND_URL: str
    DATABASE_URL: str
    QUESTION_COUNT: int
    USER_SEARCH_LIMIT: int
    MAX_TRANSFER_AMOUNT: Decimal

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "168"))  # 7 days
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.QUESTION_COUNT = int(os.getenv("QUESTION_COUNT", "20"))
        self.USER_SEARCH_LIMIT = int(os.getenv("USER_SEARCH_LIMIT", "10"))
        # amounts are capped at eight integer digits
        self.MAX_TRANSFER_AMOUNT = Decimal(os.getenv("MAX_TRANSFER_AMOUNT", "99999999.99"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.QUESTION_COUNT < 1:
            raise RuntimeError("QUESTION_COUNT must be a positive integer")
        if self.USER_SEARCH_LIMIT < 1:
            raise RuntimeError("USER_SEARCH_LIMIT must be a positive integer")


settings = Settings()
