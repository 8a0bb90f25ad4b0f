"""Record classes and column schema for copy-number segment aggregation."""

from msgspec import Struct, structs
import pandas as pd

pd.options.future.infer_string = True  # type: ignore

# Long-format segment table handed to the region union.
SAMPLE_COLUMN = "sample"
CHROM_COLUMN = "chrom"
START_COLUMN = "start"
END_COLUMN = "end"
NUM_MARK_COLUMN = "num.mark"
SEG_MEAN_COLUMN = "seg.mean"
SEGMENT_COLUMNS = [
    SAMPLE_COLUMN,
    CHROM_COLUMN,
    START_COLUMN,
    END_COLUMN,
    NUM_MARK_COLUMN,
    SEG_MEAN_COLUMN,
]

# Combined segmentation table, as exported from cBioPortal-style .seg files.
ID_COLUMN = "ID"
LOC_START_COLUMN = "loc.start"
LOC_END_COLUMN = "loc.end"
PURITY_COLUMN = "purity"
PLOIDY_COLUMN = "ploidy"
TCN_COLUMN = "tcn"
LCN_COLUMN = "lcn"
COMBINED_REQUIRED_COLUMNS = [
    ID_COLUMN,
    CHROM_COLUMN,
    LOC_START_COLUMN,
    LOC_END_COLUMN,
    NUM_MARK_COLUMN,
]

# FACETS cncf columns.
TCN_EM_COLUMN = "tcn.em"
LCN_EM_COLUMN = "lcn.em"
CNLR_MEDIAN_COLUMN = "cnlr.median"
CNCF_COLUMNS = [
    CHROM_COLUMN,
    START_COLUMN,
    END_COLUMN,
    TCN_EM_COLUMN,
    LCN_EM_COLUMN,
    NUM_MARK_COLUMN,
    CNLR_MEDIAN_COLUMN,
]
CNCF_COMPLETE_CASE_COLUMNS = [
    CHROM_COLUMN,
    START_COLUMN,
    END_COLUMN,
    TCN_EM_COLUMN,
    LCN_EM_COLUMN,
    NUM_MARK_COLUMN,
]

# Pseudocount keeping log2 finite for zero total copy number.
SEG_MEAN_EPSILON = 1e-6

# Copy-number state of an unaltered diploid locus.
NEUTRAL_TOTAL_COPY_NUMBER = 2
NEUTRAL_MINOR_COPY_NUMBER = 1

SEX_CHROMOSOME_CODES = {"X": "22", "Y": "23"}


class CopyNumberCall(
    Struct,
    frozen=True,
    rename={
        "tcn_em": TCN_EM_COLUMN,
        "lcn_em": LCN_EM_COLUMN,
        "num_mark": NUM_MARK_COLUMN,
        "cnlr_median": CNLR_MEDIAN_COLUMN,
    },
):
    """One row of a FACETS cncf segment table."""

    chrom: int | str | None = None
    start: float | None = None
    end: float | None = None
    tcn_em: float | None = None
    lcn_em: float | None = None
    num_mark: float | None = None
    cnlr_median: float | None = None


class PatientFit(Struct, frozen=True, rename={"dip_log_r": "dipLogR"}):
    """Represent the parts of a FACETS fit needed for aggregation.

    purity and ploidy are left as None when FACETS could not estimate them;
    callers decide how to default them.
    """

    purity: float | None = None
    ploidy: float | None = None
    dip_log_r: float | None = None
    cncf: list[CopyNumberCall] = []

    def calls_df(self) -> pd.DataFrame:
        """Return the cncf calls as a DataFrame with FACETS column names."""
        return pd.DataFrame.from_records(
            [structs.astuple(call) for call in self.cncf], columns=CNCF_COLUMNS
        )


class AggregateResult(Struct, frozen=True, kw_only=True):
    """Unioned copy-number matrix plus per-patient summaries.

    `cn` has one row per retained patient, in requested order, and one column
    per unioned genomic region.  The summary dicts are keyed in the same
    order.  `missing` is None unless some requested patient was excluded.
    """

    cn: pd.DataFrame
    patients: list[str]
    ploidy: dict[str, float]
    purity: dict[str, float]
    fga: dict[str, float]
    dip_log_r: dict[str, float]
    missing: list[str] | None = None
