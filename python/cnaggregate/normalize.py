"""Normalize per-patient segment calls into the long-format segment table.

Both input modes end up as batches with columns
[sample, chrom, start, end, num.mark, seg.mean], one batch per patient, with
X/Y recoded to 22/23 and non-finite seg.mean rows dropped.
"""

import logging

import numpy as np
import pandas as pd

from cnaggregate.segment_types import (
    CHROM_COLUMN,
    CNCF_COMPLETE_CASE_COLUMNS,
    COMBINED_REQUIRED_COLUMNS,
    END_COLUMN,
    ID_COLUMN,
    LCN_COLUMN,
    LCN_EM_COLUMN,
    LOC_END_COLUMN,
    LOC_START_COLUMN,
    NEUTRAL_MINOR_COPY_NUMBER,
    NEUTRAL_TOTAL_COPY_NUMBER,
    NUM_MARK_COLUMN,
    PLOIDY_COLUMN,
    PURITY_COLUMN,
    SAMPLE_COLUMN,
    SEG_MEAN_COLUMN,
    SEG_MEAN_EPSILON,
    SEX_CHROMOSOME_CODES,
    START_COLUMN,
    TCN_COLUMN,
    TCN_EM_COLUMN,
    PatientFit,
)

logger = logging.getLogger(__name__)

pd.options.future.infer_string = True  # type: ignore


def log2_segment_mean(total_copy_number, ploidy):
    """Return log2(tcn / ploidy + 1e-6).

    Works on scalars and Series alike.  A zero ploidy yields inf or NaN, which
    callers are expected to filter out.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.log2(total_copy_number / ploidy + SEG_MEAN_EPSILON)


def recode_sex_chromosomes(chrom: pd.Series) -> pd.Series:
    """Map chromosome labels to integers, with X -> 22 and Y -> 23.

    This mirrors the numbering used by the downstream clustering tools, and it
    puts X in the same slot as the autosome 22.
    """
    labels = chrom.astype(str).str.strip()
    has_x = (labels == "X").any()
    if has_x and (pd.to_numeric(labels, errors="coerce") == int(SEX_CHROMOSOME_CODES["X"])).any():
        logger.warning(
            "Segments on both chromosome 22 and chromosome X are present; "
            "X is recoded as 22 and the two share a chromosome code."
        )
    return pd.to_numeric(labels.replace(SEX_CHROMOSOME_CODES)).astype(int)


def fraction_genome_altered(
    start: pd.Series,
    end: pd.Series,
    total_copy_number: pd.Series,
    minor_copy_number: pd.Series,
) -> float:
    """Fraction of segment length not in the (total=2, minor=1) state.

    Returns NaN if the segments have no total length.
    """
    lengths = end - start
    total_length = lengths.sum()
    if total_length == 0:
        return float("nan")

    neutral = (total_copy_number == NEUTRAL_TOTAL_COPY_NUMBER) & (
        minor_copy_number == NEUTRAL_MINOR_COPY_NUMBER
    )
    return float(lengths[~neutral].sum() / total_length)


def _finite_segments(segments: pd.DataFrame) -> pd.DataFrame:
    finite = np.isfinite(segments[SEG_MEAN_COLUMN].to_numpy(dtype=float))
    dropped = int((~finite).sum())
    if dropped:
        logger.debug("Dropping %d segments with non-finite seg.mean", dropped)
    return segments[finite].reset_index(drop=True)


def complete_fit_calls(fit: PatientFit) -> pd.DataFrame:
    """Return the fit's cncf calls with no missing value in the required columns."""
    calls = fit.calls_df().dropna(subset=CNCF_COMPLETE_CASE_COLUMNS)
    return calls.astype(
        {
            START_COLUMN: float,
            END_COLUMN: float,
            TCN_EM_COLUMN: float,
            LCN_EM_COLUMN: float,
            NUM_MARK_COLUMN: float,
        }
    )


def fit_fraction_genome_altered(calls: pd.DataFrame) -> float:
    """FGA of complete-case cncf calls."""
    return fraction_genome_altered(
        calls[START_COLUMN], calls[END_COLUMN], calls[TCN_EM_COLUMN], calls[LCN_EM_COLUMN]
    )


def normalize_fit_calls(calls: pd.DataFrame, sample: str, ploidy: float) -> pd.DataFrame:
    """Convert complete-case cncf calls of one patient to the long segment format."""
    segments = pd.DataFrame(
        {
            SAMPLE_COLUMN: sample,
            CHROM_COLUMN: recode_sex_chromosomes(calls[CHROM_COLUMN]),
            START_COLUMN: calls[START_COLUMN].astype(int),
            END_COLUMN: calls[END_COLUMN].astype(int),
            NUM_MARK_COLUMN: calls[NUM_MARK_COLUMN].astype(int),
            SEG_MEAN_COLUMN: log2_segment_mean(calls[TCN_EM_COLUMN], ploidy),
        },
        index=calls.index,
        columns=[
            SAMPLE_COLUMN,
            CHROM_COLUMN,
            START_COLUMN,
            END_COLUMN,
            NUM_MARK_COLUMN,
            SEG_MEAN_COLUMN,
        ],
    )
    return _finite_segments(segments)


def recomputes_seg_mean(seg: pd.DataFrame) -> bool:
    """A combined table carrying tcn and ploidy gets its seg.mean recomputed."""
    return TCN_COLUMN in seg.columns and PLOIDY_COLUMN in seg.columns


def check_combined_columns(seg: pd.DataFrame) -> None:
    """Check that a combined segmentation table has the columns we need."""
    required = list(COMBINED_REQUIRED_COLUMNS)
    if not recomputes_seg_mean(seg):
        required.append(SEG_MEAN_COLUMN)

    absent = [col for col in required if col not in seg.columns]
    if absent:
        err_msg = (
            f"Combined segmentation table is missing columns {absent}, "
            f"got columns: {list(seg.columns)}"
        )
        raise ValueError(err_msg)


def filter_combined_table(seg: pd.DataFrame, patients: list[str], min_purity: float) -> pd.DataFrame:
    """Keep rows of the requested patients whose purity passes the threshold.

    Tables without a purity column are only filtered by patient.
    """
    check_combined_columns(seg)
    filtered = seg.assign(**{ID_COLUMN: seg[ID_COLUMN].astype(str)})
    filtered = filtered[filtered[ID_COLUMN].isin(patients)]

    if PURITY_COLUMN in filtered.columns:
        purity = pd.to_numeric(filtered[PURITY_COLUMN], errors="coerce")
        filtered = filtered[purity.notna() & (purity >= min_purity)]

    return filtered


def normalize_combined_table(filtered: pd.DataFrame, patients: list[str]) -> list[pd.DataFrame]:
    """Split a filtered combined table into per-patient long-format batches.

    Batches follow the order of `patients`; patients without any finite
    segment get no batch.
    """
    if recomputes_seg_mean(filtered):
        seg_mean = log2_segment_mean(
            pd.to_numeric(filtered[TCN_COLUMN]), pd.to_numeric(filtered[PLOIDY_COLUMN])
        )
    else:
        seg_mean = pd.to_numeric(filtered[SEG_MEAN_COLUMN])

    segments = pd.DataFrame(
        {
            SAMPLE_COLUMN: filtered[ID_COLUMN],
            CHROM_COLUMN: recode_sex_chromosomes(filtered[CHROM_COLUMN]),
            START_COLUMN: pd.to_numeric(filtered[LOC_START_COLUMN]).astype(int),
            END_COLUMN: pd.to_numeric(filtered[LOC_END_COLUMN]).astype(int),
            NUM_MARK_COLUMN: pd.to_numeric(filtered[NUM_MARK_COLUMN]).astype(int),
            SEG_MEAN_COLUMN: seg_mean,
        },
        index=filtered.index,
    )
    segments = _finite_segments(segments)

    by_sample = dict(tuple(segments.groupby(SAMPLE_COLUMN, sort=False)))
    return [by_sample[patient].reset_index(drop=True) for patient in patients if patient in by_sample]


def summarize_combined_table(
    filtered: pd.DataFrame, patients: list[str]
) -> tuple[dict[str, float], dict[str, float], dict[str, float]]:
    """Return (purity, ploidy, fga) per patient from the optional table columns.

    Each dict is empty when the columns it needs are absent.
    """
    purity: dict[str, float] = {}
    ploidy: dict[str, float] = {}
    fga: dict[str, float] = {}

    by_patient = dict(tuple(filtered.groupby(ID_COLUMN, sort=False)))
    for patient in patients:
        rows = by_patient.get(patient)
        if rows is None:
            continue

        if PURITY_COLUMN in rows.columns:
            purity[patient] = float(pd.to_numeric(rows[PURITY_COLUMN]).iloc[0])
        if PLOIDY_COLUMN in rows.columns:
            ploidy[patient] = float(pd.to_numeric(rows[PLOIDY_COLUMN]).iloc[0])
        if TCN_COLUMN in rows.columns and LCN_COLUMN in rows.columns:
            complete = rows.dropna(subset=[LOC_START_COLUMN, LOC_END_COLUMN, TCN_COLUMN, LCN_COLUMN])
            fga[patient] = fraction_genome_altered(
                pd.to_numeric(complete[LOC_START_COLUMN]),
                pd.to_numeric(complete[LOC_END_COLUMN]),
                pd.to_numeric(complete[TCN_COLUMN]),
                pd.to_numeric(complete[LCN_COLUMN]),
            )

    return purity, ploidy, fga
