"""Pipeline step implementations."""

from schemasense.pipeline.phases.base import BasePhase
from schemasense.pipeline.phases.classification_phase import ClassificationPhase
from schemasense.pipeline.phases.enrichment_phase import EnrichmentPhase
from schemasense.pipeline.phases.finalization_phase import FinalizationPhase
from schemasense.pipeline.phases.profiling_phase import ProfilingPhase
from schemasense.pipeline.phases.relationships_phase import RelationshipsPhase
from schemasense.pipeline.phases.terminology_phase import TerminologyPhase

__all__ = [
    "BasePhase",
    "ClassificationPhase",
    "EnrichmentPhase",
    "FinalizationPhase",
    "ProfilingPhase",
    "RelationshipsPhase",
    "TerminologyPhase",
]
