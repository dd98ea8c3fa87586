"""schemasense - semantic ontology extraction for relational databases."""

__version__ = "0.1.0"
