from customer_merge.steps.blocking import BlockingIndex
from customer_merge.steps.clustering import ClusterBuilder, ClusterOutcome
from customer_merge.steps.normalize import NameNormalizer
from customer_merge.steps.similarity import SimilarityCache, SimilarityEngine

__all__ = [
    "BlockingIndex",
    "ClusterBuilder",
    "ClusterOutcome",
    "NameNormalizer",
    "SimilarityCache",
    "SimilarityEngine",
]
