from customer_merge.runners.local import LocalPairScorer
from customer_merge.runners.threaded import ThreadedPairScorer

__all__ = ["LocalPairScorer", "ThreadedPairScorer"]
