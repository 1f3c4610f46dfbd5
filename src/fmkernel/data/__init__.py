from .samples import SampleBatch, assign_sample_ids

__all__ = ["SampleBatch", "assign_sample_ids"]
