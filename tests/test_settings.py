"""Tests for environment-driven settings and logging setup."""

import logging

import pytest

from quiz_workshop.core.errors import Unauthorized
from quiz_workshop.server.auth import check_admin_secret
from quiz_workshop.utils.logging_config import configure_logging
from quiz_workshop.utils.settings import WorkshopSettings


def test_defaults_apply_to_an_empty_environment():
    settings = WorkshopSettings.from_env({})

    assert settings.admin_secret is None
    assert settings.database_url is None
    assert settings.question_count == 2
    assert settings.default_time_limit == 300
    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.rotation_stale_after == 60


def test_values_are_read_from_the_environment():
    settings = WorkshopSettings.from_env(
        {
            "QUIZ_ADMIN_SECRET": "hunter2",
            "QUIZ_DATABASE_URL": "sqlite:///quiz.db",
            "QUIZ_QUESTION_COUNT": "5",
            "QUIZ_DEFAULT_TIME_LIMIT": "120",
            "QUIZ_HOST": "127.0.0.1",
            "QUIZ_PORT": "9000",
            "QUIZ_LOG_LEVEL": "debug",
            "QUIZ_ROTATION_STALE_AFTER": "15",
        }
    )

    assert settings.admin_secret == "hunter2"
    assert settings.database_url == "sqlite:///quiz.db"
    assert settings.question_count == 5
    assert settings.default_time_limit == 120
    assert settings.host == "127.0.0.1"
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"
    assert settings.rotation_stale_after == 15


def test_blank_values_fall_back_to_defaults():
    settings = WorkshopSettings.from_env({"QUIZ_ADMIN_SECRET": "", "QUIZ_PORT": "  "})

    assert settings.admin_secret is None
    assert settings.port == 8000


@pytest.mark.parametrize("value", ["abc", "0", "-3"])
def test_bad_numbers_are_rejected(value):
    with pytest.raises(ValueError):
        WorkshopSettings.from_env({"QUIZ_QUESTION_COUNT": value})


def test_admin_secret_check():
    check_admin_secret("hunter2", "hunter2")
    with pytest.raises(Unauthorized):
        check_admin_secret("hunter2", "hunter3")
    with pytest.raises(Unauthorized):
        check_admin_secret("hunter2", None)
    with pytest.raises(Unauthorized):
        check_admin_secret(None, "anything")


def test_configure_logging_returns_the_package_logger():
    logger = configure_logging("DEBUG")

    assert logger.name == "quiz_workshop"
    assert isinstance(logger, logging.Logger)
