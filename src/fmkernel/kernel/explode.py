from __future__ import annotations

from fmkernel.data.samples import SampleBatch
from fmkernel.frame import Frame


def explode(batch: SampleBatch) -> Frame:
    """One row per explicitly present feature entry; zero values are kept."""
    if not batch.has_sample_ids:
        raise ValueError("sample ids must be assigned before exploding a batch")
    sample_index = batch.row_sample_index()
    columns = {
        "sample_index": sample_index,
        "sample_id": batch.sample_ids[sample_index],
        "feature_id": batch.feature_ids,
        "value": batch.values,
    }
    if batch.labels is not None:
        columns["label"] = batch.labels[sample_index]
    return Frame(columns)
