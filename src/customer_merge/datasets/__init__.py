from customer_merge.datasets.reference import ReferenceCustomer, ReferenceDatasetGenerator, ground_truth_pairs

__all__ = ["ReferenceCustomer", "ReferenceDatasetGenerator", "ground_truth_pairs"]
