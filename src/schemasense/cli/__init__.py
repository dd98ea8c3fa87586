"""CLI for schemasense.

Provides commands for building ontologies, monitoring runs, reviewing
schema and data changes, and answering clarification questions.

Usage:
    schemasense extract ./warehouse.duckdb -P acme -O sales
    schemasense status -P acme -O sales
    schemasense changes list -P acme -O sales
    schemasense questions list -P acme -O sales

Environment:
    Loads .env file from current directory if present.
    Set ANTHROPIC_API_KEY for the semantic classifier.
"""

from schemasense.cli.main import app, main

__all__ = ["app", "main"]
