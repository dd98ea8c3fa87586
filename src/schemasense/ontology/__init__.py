"""Ontology: merge-managed metadata records and schema change review.

Submodules are imported directly (``schemasense.ontology.merge``,
``schemasense.ontology.changes``); the models here are loaded by
``storage.init_database``.
"""
