"""
Configuration - Environment-driven settings and logging setup.

Values come from the process environment, with a .env file read first.
"""

import logging
from functools import lru_cache
from logging.config import dictConfig
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Redis
    redis_host: str = Field("localhost", alias="REDIS_HOST")
    redis_port: int = Field(6379, alias="REDIS_PORT")
    redis_password: Optional[str] = Field(None, alias="REDIS_PASSWORD")

    # Question selection (local bank when no URL is set)
    question_service_url: Optional[str] = Field(None, alias="QUESTION_SERVICE_URL")
    question_service_api_key: Optional[str] = Field(None, alias="QUESTION_SERVICE_API_KEY")
    question_timeout_seconds: float = Field(5.0, gt=0, alias="QUESTION_TIMEOUT_SECONDS")
    record_timeout_seconds: float = Field(3.0, gt=0, alias="RECORD_TIMEOUT_SECONDS")

    # Playlist
    default_skip_threshold: float = Field(0.8, gt=0, le=1, alias="DEFAULT_SKIP_THRESHOLD")
    practice_questions_per_node: int = Field(5, ge=1, alias="PRACTICE_QUESTIONS_PER_NODE")

    # Data
    course_data_dir: str = Field("data/courses", alias="COURSE_DATA_DIR")
    question_data_dir: str = Field("data/questions", alias="QUESTION_DATA_DIR")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator(
        "redis_password", "question_service_url", "question_service_api_key", mode="before"
    )
    @classmethod
    def blank_is_unset(cls, value):
        return value or None

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging to stderr."""
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["default"],
                "level": level or get_settings().log_level,
            },
        }
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
