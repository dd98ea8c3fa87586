"""CLI command implementations."""

from schemasense.cli.commands import changes, extract, questions, status

__all__ = [
    "changes",
    "extract",
    "questions",
    "status",
]
