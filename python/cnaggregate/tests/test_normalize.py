import logging

import numpy as np
import pandas as pd
import pytest

from cnaggregate.normalize import (
    check_combined_columns,
    complete_fit_calls,
    filter_combined_table,
    fit_fraction_genome_altered,
    fraction_genome_altered,
    log2_segment_mean,
    normalize_combined_table,
    normalize_fit_calls,
    recode_sex_chromosomes,
    summarize_combined_table,
)
from cnaggregate.segment_types import SEGMENT_COLUMNS, CopyNumberCall, PatientFit

pd.options.future.infer_string = True  # type: ignore


@pytest.fixture()
def fit() -> PatientFit:
    return PatientFit(
        purity=0.5,
        ploidy=2.0,
        dip_log_r=-0.05,
        cncf=[
            CopyNumberCall(chrom=1, start=1, end=101, tcn_em=2, lcn_em=1, num_mark=40),
            CopyNumberCall(chrom=1, start=102, end=402, tcn_em=4, lcn_em=1, num_mark=80),
            CopyNumberCall(chrom=2, start=1, end=1000, tcn_em=3, lcn_em=None, num_mark=12),
            CopyNumberCall(chrom="X", start=1, end=51, tcn_em=1, lcn_em=0, num_mark=7),
        ],
    )


@pytest.fixture()
def combined_seg() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "ID": ["P1", "P1", "P2", "P2", "P3"],
            "chrom": ["1", "X", "1", "Y", "1"],
            "loc.start": [1, 1, 1, 1, 1],
            "loc.end": [100, 50, 100, 50, 100],
            "num.mark": [10, 5, 12, 6, 9],
            "seg.mean": [0.1, -0.2, 0.3, 0.0, 0.5],
            "purity": [0.6, 0.6, 0.2, 0.2, None],
        }
    )


def test_log2_segment_mean():
    assert log2_segment_mean(4, 2) == pytest.approx(1.0000007, abs=1e-7)
    assert log2_segment_mean(4, 2) == np.log2(2 + 1e-6)


def test_log2_segment_mean_zero_copies_is_finite():
    assert np.isfinite(log2_segment_mean(0.0, 2.0))
    assert log2_segment_mean(0.0, 2.0) == pytest.approx(np.log2(1e-6))


def test_log2_segment_mean_zero_ploidy_is_not_finite():
    seg_mean = log2_segment_mean(pd.Series([2.0, 0.0]), 0.0)
    assert not np.isfinite(seg_mean).any()


def test_recode_sex_chromosomes():
    recoded = recode_sex_chromosomes(pd.Series(["1", "X", "Y", "2", "X"]))
    assert recoded.tolist() == [1, 22, 23, 2, 22]


def test_recode_sex_chromosomes_numeric_input():
    assert recode_sex_chromosomes(pd.Series([1, 5, 23])).tolist() == [1, 5, 23]


def test_recode_sex_chromosomes_warns_on_chromosome_22_collision(caplog):
    with caplog.at_level(logging.WARNING, logger="cnaggregate.normalize"):
        recoded = recode_sex_chromosomes(pd.Series(["22", "X"]))

    assert recoded.tolist() == [22, 22]
    assert "chromosome 22" in caplog.text


def test_recode_sex_chromosomes_rejects_unknown_labels():
    with pytest.raises(ValueError):
        recode_sex_chromosomes(pd.Series(["1", "MT"]))


def test_fraction_genome_altered_all_neutral_is_zero():
    fga = fraction_genome_altered(
        start=pd.Series([1, 500, 1]),
        end=pd.Series([400, 900, 2000]),
        total_copy_number=pd.Series([2, 2, 2]),
        minor_copy_number=pd.Series([1, 1, 1]),
    )
    assert fga == 0.0


def test_fraction_genome_altered_weights_by_length():
    fga = fraction_genome_altered(
        start=pd.Series([0, 100, 400]),
        end=pd.Series([100, 400, 500]),
        total_copy_number=pd.Series([2, 3, 2]),
        minor_copy_number=pd.Series([1, 1, 0]),
    )
    # 300 bp gained and 100 bp copy-neutral LOH out of 500 bp.
    assert fga == pytest.approx(0.8)


def test_fraction_genome_altered_empty_is_nan():
    empty = pd.Series([], dtype=float)
    assert np.isnan(fraction_genome_altered(empty, empty, empty, empty))


def test_complete_fit_calls_drops_incomplete_rows(fit):
    calls = complete_fit_calls(fit)

    assert len(calls) == 3
    assert calls["chrom"].tolist() == [1, 1, "X"]
    assert calls["tcn.em"].tolist() == [2.0, 4.0, 1.0]


def test_fit_fraction_genome_altered(fit):
    calls = complete_fit_calls(fit)
    # lengths 100 (neutral), 300 (tcn 4) and 50 (tcn 1)
    assert fit_fraction_genome_altered(calls) == pytest.approx(350 / 450)


def test_normalize_fit_calls(fit):
    calls = complete_fit_calls(fit)
    segments = normalize_fit_calls(calls, "P1", 2.0)

    assert segments.columns.tolist() == SEGMENT_COLUMNS
    assert segments["sample"].tolist() == ["P1", "P1", "P1"]
    assert segments["chrom"].tolist() == [1, 1, 22]
    assert segments["start"].tolist() == [1, 102, 1]
    assert segments["end"].tolist() == [101, 402, 51]
    assert segments["num.mark"].tolist() == [40, 80, 7]
    np.testing.assert_allclose(
        segments["seg.mean"].to_numpy(),
        np.log2(np.array([1.0, 2.0, 0.5]) + 1e-6),
    )


def test_normalize_fit_calls_zero_ploidy_drops_every_segment(fit):
    segments = normalize_fit_calls(complete_fit_calls(fit), "P1", 0.0)
    assert segments.empty
    assert segments.columns.tolist() == SEGMENT_COLUMNS


def test_check_combined_columns_requires_seg_mean_without_tcn(combined_seg):
    with pytest.raises(ValueError, match="seg.mean"):
        check_combined_columns(combined_seg.drop(columns=["seg.mean"]))

    recomputable = combined_seg.drop(columns=["seg.mean"]).assign(tcn=2, ploidy=2.0)
    check_combined_columns(recomputable)


def test_filter_combined_table_by_patient_and_purity(combined_seg):
    filtered = filter_combined_table(combined_seg, ["P1", "P2", "P3"], min_purity=0.3)
    # P2 is below the threshold and P3 has no purity estimate.
    assert filtered["ID"].tolist() == ["P1", "P1"]


def test_filter_combined_table_without_purity_column(combined_seg):
    filtered = filter_combined_table(
        combined_seg.drop(columns=["purity"]), ["P2", "P3"], min_purity=0.9
    )
    assert filtered["ID"].tolist() == ["P2", "P2", "P3"]


def test_normalize_combined_table_passes_seg_mean_through(combined_seg):
    filtered = filter_combined_table(combined_seg.drop(columns=["purity"]), ["P3", "P1"], 0.3)
    batches = normalize_combined_table(filtered, ["P3", "P1"])

    assert [batch["sample"].iloc[0] for batch in batches] == ["P3", "P1"]
    p3, p1 = batches
    assert p3["seg.mean"].tolist() == [0.5]
    assert p1["chrom"].tolist() == [1, 22]
    assert p1["seg.mean"].tolist() == [0.1, -0.2]
    assert p1.columns.tolist() == SEGMENT_COLUMNS


def test_normalize_combined_table_recodes_every_sex_chromosome(combined_seg):
    filtered = filter_combined_table(combined_seg.drop(columns=["purity"]), ["P1", "P2"], 0.3)
    chroms = pd.concat(normalize_combined_table(filtered, ["P1", "P2"]))["chrom"].tolist()
    assert chroms == [1, 22, 1, 23]


def test_normalize_combined_table_recomputes_seg_mean():
    seg = pd.DataFrame(
        {
            "ID": ["P1", "P1", "P2"],
            "chrom": [1, 2, 1],
            "loc.start": [1, 1, 1],
            "loc.end": [100, 100, 100],
            "num.mark": [10, 10, 10],
            "seg.mean": [9.0, 9.0, 9.0],
            "tcn": [4, 2, 0],
            "ploidy": [2.0, 2.0, 0.0],
        }
    )
    filtered = filter_combined_table(seg, ["P1", "P2"], 0.3)
    batches = normalize_combined_table(filtered, ["P1", "P2"])

    # P2 has 0/0 copies and loses its only segment.
    assert len(batches) == 1
    np.testing.assert_allclose(
        batches[0]["seg.mean"].to_numpy(), [np.log2(2 + 1e-6), np.log2(1 + 1e-6)]
    )


def test_summarize_combined_table():
    seg = pd.DataFrame(
        {
            "ID": ["P1", "P1", "P2"],
            "chrom": [1, 2, 1],
            "loc.start": [0, 0, 0],
            "loc.end": [100, 100, 100],
            "num.mark": [10, 10, 10],
            "tcn": [2, 3, 2],
            "lcn": [1, 1, 1],
            "ploidy": [2.1, 2.1, 3.0],
            "purity": [0.5, 0.5, 0.9],
        }
    )
    purity, ploidy, fga = summarize_combined_table(
        filter_combined_table(seg, ["P2", "P1"], 0.3), ["P2", "P1"]
    )

    assert list(purity) == ["P2", "P1"]
    assert purity == {"P2": 0.9, "P1": 0.5}
    assert ploidy == {"P2": 3.0, "P1": 2.1}
    assert fga == {"P2": 0.0, "P1": 0.5}


def test_summarize_combined_table_without_optional_columns(combined_seg):
    filtered = filter_combined_table(combined_seg.drop(columns=["purity"]), ["P1"], 0.3)
    assert summarize_combined_table(filtered, ["P1"]) == ({}, {}, {})
