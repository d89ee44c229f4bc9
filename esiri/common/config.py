# esiri/common/config.py

import os
from typing import Annotated, List
from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Load environment variables from the correct .env file
env_file = ".env.production" if os.getenv("APP_ENV") == "production" else ".env"
load_dotenv(env_file)

class Settings(BaseSettings):
    APP_ENV: str = "development"
    DEBUG: bool = False
    DATABASE_URL: str
    ALEMBIC_DATABASE_URL: str = ""
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ALLOWED_ORIGINS: Annotated[List[str], NoDecode] = ["*"]
    LOG_LEVEL: str = "info"

    # Cron workers authenticate with this shared secret
    CRON_SECRET: str

    # Patient sessions
    PATIENT_SESSION_HOURS: int = 24
    MAX_SESSION_DAYS: int = 30

    # Payments (M-Pesa Daraja)
    PAYMENT_ENV: str = "mock"  # mock | sandbox | production
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = "174379"
    MPESA_PASSKEY: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_ALLOWED_IPS: Annotated[List[str], NoDecode] = [
        "196.201.214.200",
        "196.201.214.206",
        "196.201.213.114",
        "196.201.214.207",
        "196.201.214.208",
        "196.201.213.44",
        "196.201.212.127",
        "196.201.212.138",
        "196.201.212.129",
        "196.201.212.136",
        "196.201.212.74",
        "196.201.212.69",
    ]
    SERVICE_ACCESS_TTL_HOURS: int = 24
    PAYMENT_RECONCILE_AFTER_MINUTES: int = 10

    # Push notifications
    PUSH_PROVIDER_URL: str = ""
    PUSH_PROVIDER_KEY: str = ""

    # Video
    VIDEO_ENV: str = "mock"  # mock | live
    VIDEOSDK_API_KEY: str = ""
    VIDEOSDK_SECRET: str = ""
    VIDEOSDK_API_ENDPOINT: str = "https://api.videosdk.live/v2"
    VIDEO_TOKEN_TTL_MINUTES: int = 120

    # Outbound HTTP calls
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Reverse proxies in front of the app that append to X-Forwarded-For
    TRUSTED_PROXY_HOPS: int = 0

    @field_validator("ALLOWED_ORIGINS", "MPESA_ALLOWED_IPS", mode="before")
    def split_csv(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

settings = Settings()
