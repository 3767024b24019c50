"""Session-related constants shared across the core and the API layer."""

# Visually confusable characters (0, 1, I, O) are left out.
CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH: int = 6
CODE_MINT_ATTEMPTS: int = 10

DEFAULT_QUESTION_COUNT: int = 2
DEFAULT_TIME_LIMIT_SECONDS: int = 300

PARTICIPANT_POLL_INTERVAL_SECONDS: float = 2.0

# An in-progress rotation journal older than this is treated as abandoned.
ROTATION_STALE_AFTER_SECONDS: int = 60
