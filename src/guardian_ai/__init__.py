"""Guardian AI: prompt-injection guard for chat assistants."""

__version__ = "0.1.0"
