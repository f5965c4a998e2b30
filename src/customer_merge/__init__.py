"""Customer name entity resolution: similarity scoring, merge suggestions and rule lifecycle."""

from customer_merge.config import MergeConfig
from customer_merge.models import MergeGroup, MergeRule, RuleStatus, SimilarityResult
from customer_merge.service import MergeService

__all__ = ["MergeConfig", "MergeGroup", "MergeRule", "MergeService", "RuleStatus", "SimilarityResult"]
