"""Relationship Resolver.

Finds references between tables from value overlap, verifies them over
complete data and labels them with a semantic role.
"""

from schemasense.analysis.relationships.agent import (
    RelationshipRoleAgent,
    RoleAssignment,
    role_from_column_name,
)
from schemasense.analysis.relationships.compatibility import TypeCompatibility
from schemasense.analysis.relationships.models import (
    KeyColumn,
    RejectedCandidate,
    RelationshipCandidate,
    ResolverResult,
    SourceColumn,
    VerifiedRelationship,
)
from schemasense.analysis.relationships.resolver import RelationshipResolver
from schemasense.analysis.relationships.verifier import infer_cardinality, verify_candidate

__all__ = [
    "KeyColumn",
    "RejectedCandidate",
    "RelationshipCandidate",
    "RelationshipResolver",
    "RelationshipRoleAgent",
    "ResolverResult",
    "RoleAssignment",
    "SourceColumn",
    "TypeCompatibility",
    "VerifiedRelationship",
    "infer_cardinality",
    "role_from_column_name",
    "verify_candidate",
]
