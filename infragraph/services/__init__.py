# Services package
from infragraph.services.aggregator import Aggregator, ProviderRun, RunRecord
from infragraph.services.graph_builder import EntityGraphBuilder
from infragraph.services.normalizer import Normalizer, NormalizationIssue

__all__ = [
    "Aggregator",
    "ProviderRun",
    "RunRecord",
    "EntityGraphBuilder",
    "Normalizer",
    "NormalizationIssue",
]
