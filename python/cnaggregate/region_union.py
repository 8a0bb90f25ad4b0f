"""Union per-patient segment boundaries into a shared set of genomic regions.

Any callable matching `RegionUnion` can be handed to the aggregator.
`union_regions` is the default: it cuts each chromosome at every breakpoint
seen in the cohort, then merges runs of adjacent regions whose per-sample
values are closer than a tolerance.
"""

import logging
from typing import Protocol

import numpy as np
import pandas as pd

from cnaggregate.segment_types import (
    CHROM_COLUMN,
    END_COLUMN,
    SAMPLE_COLUMN,
    SEG_MEAN_COLUMN,
    SEGMENT_COLUMNS,
    START_COLUMN,
)

logger = logging.getLogger(__name__)

pd.options.future.infer_string = True  # type: ignore

DEFAULT_EPSILON = 0.005


class RegionUnion(Protocol):
    """Turn a long segment table into a sample x region matrix of seg.mean values."""

    def __call__(self, segments: pd.DataFrame, epsilon: float, adaptive: bool) -> pd.DataFrame:
        ...


class _ChromosomeRegions:
    def __init__(self, chrom: int, starts: np.ndarray, ends: np.ndarray, values: np.ndarray):
        self.chrom = chrom
        self.starts = starts
        self.ends = ends
        # samples x regions
        self.values = values

    def __len__(self) -> int:
        return len(self.starts)

    def labels(self) -> list[str]:
        return [f"{self.chrom}:{start}-{end}" for start, end in zip(self.starts, self.ends)]


def _elementary_regions(
    chrom: int, chrom_segments: pd.DataFrame, samples: list[str]
) -> _ChromosomeRegions:
    """Cut a chromosome at every segment start and after every segment end."""
    seg_starts = chrom_segments[START_COLUMN].to_numpy(dtype=np.int64)
    seg_ends = chrom_segments[END_COLUMN].to_numpy(dtype=np.int64)

    boundaries = np.union1d(seg_starts, seg_ends + 1)
    region_starts = boundaries[:-1]
    region_ends = boundaries[1:] - 1

    values = np.full((len(samples), len(region_starts)), np.nan)
    sample_rows = {sample: i for i, sample in enumerate(samples)}
    for sample, start, end, seg_mean in zip(
        chrom_segments[SAMPLE_COLUMN],
        seg_starts,
        seg_ends,
        chrom_segments[SEG_MEAN_COLUMN].to_numpy(dtype=float),
    ):
        first = np.searchsorted(region_starts, start, side="left")
        last = np.searchsorted(region_ends, end, side="right")
        values[sample_rows[sample], first:last] = seg_mean

    covered = ~np.isnan(values).all(axis=0)
    return _ChromosomeRegions(chrom, region_starts[covered], region_ends[covered], values[:, covered])


def _mergeable(regions: _ChromosomeRegions, left: int, right: int, threshold: float) -> bool:
    if regions.ends[left] + 1 != regions.starts[right]:
        return False

    left_values = regions.values[:, left]
    right_values = regions.values[:, right]
    left_missing = np.isnan(left_values)
    if not np.array_equal(left_missing, np.isnan(right_values)):
        return False

    diff = left_values[~left_missing] - right_values[~left_missing]
    return float(np.sqrt(np.sum(diff**2))) < threshold


def _merge_adjacent(regions: _ChromosomeRegions, threshold: float) -> _ChromosomeRegions:
    """Merge runs of adjacent regions closer than `threshold` (Euclidean, across samples)."""
    if len(regions) == 0 or threshold <= 0:
        return regions

    groups = [[0]]
    for j in range(1, len(regions)):
        if _mergeable(regions, j - 1, j, threshold):
            groups[-1].append(j)
        else:
            groups.append([j])

    starts = np.array([regions.starts[group[0]] for group in groups])
    ends = np.array([regions.ends[group[-1]] for group in groups])
    # NaN patterns are identical within a group, so a plain mean is safe.
    values = np.column_stack([regions.values[:, group].mean(axis=1) for group in groups])
    return _ChromosomeRegions(regions.chrom, starts, ends, values)


def _thresholds(per_chrom: list[_ChromosomeRegions], epsilon: float, adaptive: bool) -> list[float]:
    if not adaptive:
        return [epsilon] * len(per_chrom)

    median_count = float(np.median([len(regions) for regions in per_chrom]))
    if median_count == 0:
        return [epsilon] * len(per_chrom)
    return [epsilon * len(regions) / median_count for regions in per_chrom]


def union_regions(
    segments: pd.DataFrame, epsilon: float = DEFAULT_EPSILON, adaptive: bool = False
) -> pd.DataFrame:
    """Build a sample x region matrix from a long-format segment table.

    Parameters
    ----------
    segments : pd.DataFrame
        Columns [sample, chrom, start, end, num.mark, seg.mean], start and end
        inclusive.
    epsilon : float
        Adjacent regions whose sample vectors lie closer than this (Euclidean
        distance) are merged.  0 keeps every breakpoint.
    adaptive : bool
        Scale epsilon per chromosome by its region count relative to the median
        chromosome, so that densely segmented chromosomes merge more.

    Returns
    -------
    pd.DataFrame
        One row per sample in order of first appearance, one column per region
        labelled "<chrom>:<start>-<end>".  NaN where a sample has no segment.
    """
    absent = [col for col in SEGMENT_COLUMNS if col not in segments.columns]
    if absent:
        raise ValueError(f"Segment table is missing columns {absent}")

    samples = list(pd.unique(segments[SAMPLE_COLUMN]))
    if segments.empty:
        return pd.DataFrame(index=pd.Index(samples, name=SAMPLE_COLUMN))

    per_chrom = [
        _elementary_regions(chrom, chrom_segments, samples)
        for chrom, chrom_segments in segments.groupby(CHROM_COLUMN, sort=True)
    ]
    elementary_count = sum(len(regions) for regions in per_chrom)

    per_chrom = [
        _merge_adjacent(regions, threshold)
        for regions, threshold in zip(per_chrom, _thresholds(per_chrom, epsilon, adaptive))
    ]
    logger.info(
        "Merged %d elementary regions into %d across %d chromosomes for %d samples",
        elementary_count,
        sum(len(regions) for regions in per_chrom),
        len(per_chrom),
        len(samples),
    )

    labels = [label for regions in per_chrom for label in regions.labels()]
    values = np.hstack([regions.values for regions in per_chrom])
    return pd.DataFrame(values, index=pd.Index(samples, name=SAMPLE_COLUMN), columns=labels)
