from customer_merge.stores.memory import InMemoryMergeStore
from customer_merge.stores.sqlite import SQLiteMergeStore

__all__ = ["InMemoryMergeStore", "SQLiteMergeStore"]
