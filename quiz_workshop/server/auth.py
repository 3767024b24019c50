"""Shared-secret check guarding the administrator endpoints."""

from __future__ import annotations

from collections.abc import Callable
import secrets

from fastapi import Header

from quiz_workshop.constants.network_constants import ADMIN_SECRET_HEADER
from quiz_workshop.core.errors import Unauthorized


def check_admin_secret(expected: str | None, provided: str | None) -> None:
    """Raise ``Unauthorized`` unless ``provided`` matches the configured secret."""
    if not expected:
        raise Unauthorized("Administrator access is not configured on this server.")
    if provided is None or not secrets.compare_digest(
        provided.encode("utf-8"), expected.encode("utf-8")
    ):
        raise Unauthorized("Invalid password")


def admin_guard(expected: str | None) -> Callable[..., None]:
    """Build a FastAPI dependency that checks the admin secret header."""

    def dependency(
        provided: str | None = Header(default=None, alias=ADMIN_SECRET_HEADER),
    ) -> None:
        check_admin_secret(expected, provided)

    return dependency
