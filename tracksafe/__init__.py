"""tracksafe -- asynchronous moderation pipeline for uploaded audio."""

__version__ = "0.1.0"
