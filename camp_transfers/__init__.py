"""Personnel transfer and bed allocation orchestration for labor camps."""

__version__ = "0.1.0"
