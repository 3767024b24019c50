"""Network configuration constants for the quiz workshop service."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
ADMIN_SECRET_HEADER: str = "X-Admin-Secret"
