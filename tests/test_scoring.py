from __future__ import annotations

from pathlib import Path
import sys

import pytest
import torch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fmkernel.config import KernelConfig  # noqa: E402
from fmkernel.data.samples import SampleBatch  # noqa: E402
from fmkernel.kernel.score import interaction_term  # noqa: E402
from fmkernel.models import FactorizationMachinesModel, ModelSnapshot  # noqa: E402


def _worked_example() -> ModelSnapshot:
    return ModelSnapshot.from_tables(
        k=2,
        bias=0.5,
        strengths={1: 0.3, 2: -0.1},
        interactions={1: [0.1, 0.2], 2: [0.4, -0.1]},
    )


def test_worked_example_is_clamped_to_max_label() -> None:
    model = FactorizationMachinesModel(_worked_example())
    out = model.transform([{"features": {1: 2.0, 2: 1.0}}])
    assert out[0]["prediction"] == pytest.approx(1.0)


def test_worked_example_raw_score_inside_wide_range() -> None:
    model = FactorizationMachinesModel(_worked_example()).with_label_range(-10.0, 10.0)
    out = model.transform([{"features": {1: 2.0, 2: 1.0}}])
    assert out[0]["prediction"] == pytest.approx(1.04)


def test_empty_feature_vector_scores_clamped_bias() -> None:
    snapshot = ModelSnapshot.from_tables(k=2, bias=1.7, strengths={}, interactions={})
    model = FactorizationMachinesModel(snapshot)
    out = model.transform([{"features": {}}, {"features": {}}])
    assert [r["prediction"] for r in out] == [1.0, 1.0]

    wide = model.with_label_range(0.0, 5.0).transform([{"features": {}}])
    assert wide[0]["prediction"] == pytest.approx(1.7)


def test_unmatched_features_are_dropped_not_the_sample() -> None:
    model = FactorizationMachinesModel(_worked_example()).with_label_range(-10.0, 10.0)
    out = model.transform(
        [
            {"features": {99: 3.0}},
            {"features": {1: 2.0, 99: 5.0}},
        ]
    )
    assert len(out) == 2
    assert out[0]["prediction"] == pytest.approx(0.5)
    # feature 1 alone: 0.5 + 0.3 * 2.0, no self-interaction
    assert out[1]["prediction"] == pytest.approx(1.1)


def test_feature_missing_from_one_table_is_dropped() -> None:
    snapshot = ModelSnapshot.from_tables(k=1, bias=0.0, strengths={1: 0.5, 2: 0.5}, interactions={1: [1.0]})
    model = FactorizationMachinesModel(snapshot).with_label_range(-10.0, 10.0)
    out = model.transform([{"features": {1: 1.0, 2: 1.0}}])
    assert out[0]["prediction"] == pytest.approx(0.5)


def test_single_feature_has_no_interaction() -> None:
    torch.manual_seed(0)
    for _ in range(20):
        vec = torch.randn(5, dtype=torch.float64)
        x = float(torch.randn(1))
        vfxi_sum = (vec * x).unsqueeze(0)
        vi2xi2_sum = (torch.sum(vec * vec) * x * x).unsqueeze(0)
        assert float(interaction_term(vfxi_sum, vi2xi2_sum)[0]) == pytest.approx(0.0, abs=1e-12)


def test_zero_dimension_reduces_to_linear_model() -> None:
    snapshot = ModelSnapshot.from_tables(
        k=0, bias=0.1, strengths={0: 0.2, 3: -0.4}, interactions={0: [], 3: []}
    )
    model = FactorizationMachinesModel(snapshot).with_label_range(-100.0, 100.0)
    out = model.transform([{"features": {0: 1.5, 3: 2.0}}, {"features": {3: -1.0}}])
    assert out[0]["prediction"] == pytest.approx(0.1 + 0.2 * 1.5 - 0.4 * 2.0)
    assert out[1]["prediction"] == pytest.approx(0.1 + 0.4)


def test_predictions_always_within_label_range() -> None:
    gen = torch.Generator().manual_seed(7)
    num_features, k = 30, 4
    for scale in (0.1, 10.0, 1e4):
        weights = torch.randn(num_features, generator=gen, dtype=torch.float64) * scale
        vectors = torch.randn(num_features, k, generator=gen, dtype=torch.float64) * scale
        snapshot = ModelSnapshot.from_tables(
            k=k,
            bias=float(torch.randn(1, generator=gen)) * scale,
            strengths={i: float(weights[i]) for i in range(num_features)},
            interactions={i: vectors[i].tolist() for i in range(num_features)},
        )
        records = []
        for _ in range(50):
            ids = torch.randperm(num_features + 10, generator=gen)[:8].tolist()
            values = (torch.randn(8, generator=gen, dtype=torch.float64) * scale).tolist()
            records.append({"features": dict(zip(ids, values))})
        model = FactorizationMachinesModel(snapshot, KernelConfig(min_label=-1.0, max_label=2.0))
        for row in model.transform(records):
            assert -1.0 <= row["prediction"] <= 2.0


def test_transform_preserves_fields_and_existing_ids() -> None:
    model = FactorizationMachinesModel(_worked_example())
    records = [
        {"sampleId": 40, "features": {1: 2.0}, "user": "a"},
        {"sampleId": 7, "features": {}, "user": "b"},
    ]
    out = model.transform(records)
    assert [r["sampleId"] for r in out] == [40, 7]
    assert [r["user"] for r in out] == ["a", "b"]
    assert all("prediction" not in r for r in records)


def test_transform_does_not_add_sample_id_column() -> None:
    model = FactorizationMachinesModel(_worked_example())
    out = model.transform([{"features": {1: 1.0}}])
    assert set(out[0]) == {"features", "prediction"}


def test_custom_column_names() -> None:
    cfg = KernelConfig(features_col="x", prediction_col="score", min_label=-5.0, max_label=5.0)
    model = FactorizationMachinesModel(_worked_example(), cfg)
    out = model.transform([{"x": {1: 2.0, 2: 1.0}}])
    assert out[0]["score"] == pytest.approx(1.04)


def test_partition_count_does_not_change_predictions() -> None:
    gen = torch.Generator().manual_seed(3)
    snapshot = ModelSnapshot.from_tables(
        k=3,
        bias=0.2,
        strengths={i: float(torch.randn(1, generator=gen)) for i in range(20)},
        interactions={i: torch.randn(3, generator=gen).tolist() for i in range(20)},
    )
    records = [
        {"features": {int(f): float(v) for f, v in zip(torch.randperm(20, generator=gen)[:6], torch.rand(6, generator=gen))}}
        for _ in range(25)
    ]
    base = FactorizationMachinesModel(snapshot, KernelConfig(min_label=-50.0, max_label=50.0))
    expected = [r["prediction"] for r in base.transform(records)]
    for parts in (2, 5, 64):
        got = [r["prediction"] for r in base.copy(num_partitions=parts).transform(records)]
        assert got == pytest.approx(expected, abs=1e-12)


def test_predict_on_prebuilt_batch() -> None:
    batch = SampleBatch.from_arrays(indptr=[0, 2, 2], feature_ids=[1, 2], values=[2.0, 1.0])
    preds = FactorizationMachinesModel(_worked_example()).with_label_range(0.0, 2.0).predict(batch)
    assert preds.tolist() == pytest.approx([1.04, 0.5])


def test_transform_schema_appends_prediction_column() -> None:
    model = FactorizationMachinesModel(_worked_example())
    assert model.transform_schema(["sampleId", "features"]) == ["sampleId", "features", "prediction"]


def test_overflowing_score_is_clamped_to_max_label() -> None:
    snapshot = ModelSnapshot.from_tables(
        k=1, bias=0.0, strengths={1: 1e308, 2: -1e308}, interactions={1: [0.0], 2: [0.0]}
    )
    model = FactorizationMachinesModel(snapshot)
    out = model.transform([{"features": {1: 10.0, 2: 10.0}}, {"features": {2: 10.0}}])
    assert out[0]["prediction"] == 1.0
    assert out[1]["prediction"] == 0.0
