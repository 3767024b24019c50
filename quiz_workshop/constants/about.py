"""Static metadata describing the quiz workshop service."""

APP_NAME = "Quiz Workshop"
APP_VERSION = "0.1.0"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "Quiz Workshop runs a timed, multi-participant quiz: one administrator drives the "
    "session through its phases while participants poll for changes and submit answers."
)
