"""Aggregate per-patient copy-number segmentations into one unioned matrix.

Two input modes are supported, and exactly one must be used:

  * a combined segmentation table (cBioPortal .seg layout) covering many
    patients, or
  * a list of per-patient FACETS fit files inside a directory.

Either way every retained patient is normalized into the long segment format,
the batches are concatenated once, and the region union turns them into a
patients x regions matrix of log2 copy-number values.
"""

import logging
import warnings
from collections.abc import Sequence
from pathlib import Path

import pandas as pd

from cnaggregate.config import DEFAULT_MIN_PURITY, validate_epsilon, validate_min_purity
from cnaggregate.errors import (
    ConfigurationError,
    DuplicatePatientError,
    LengthMismatchError,
    MissingPatientsWarning,
    PathNotFoundError,
)
from cnaggregate.normalize import (
    check_combined_columns,
    complete_fit_calls,
    filter_combined_table,
    fit_fraction_genome_altered,
    normalize_combined_table,
    normalize_fit_calls,
    summarize_combined_table,
)
from cnaggregate.patient_fit import (
    FIT_LOAD_ERRORS,
    PatientFitLoader,
    load_patient_fit,
    patient_name_from_filename,
)
from cnaggregate.region_union import DEFAULT_EPSILON, RegionUnion, union_regions
from cnaggregate.segment_types import ID_COLUMN, SAMPLE_COLUMN, AggregateResult
from cnaggregate.timer import Timer

logger = logging.getLogger(__name__)

pd.options.future.infer_string = True  # type: ignore

MISSING_PATIENTS_MESSAGE = (
    "Some patients were excluded: their fit could not be loaded, their purity was below "
    "the threshold, or they had no usable segments. See the 'missing' field for the full list."
)


def _check_input_mode(seg: pd.DataFrame | None, filenames: Sequence[str] | None) -> None:
    if seg is None and filenames is None:
        raise ConfigurationError(
            "You must provide either a combined segmentation table "
            "or a list of fit files to be loaded with their directory path"
        )
    if seg is not None and filenames is not None:
        raise ConfigurationError(
            "Please provide either a combined segmentation table "
            "or a list of fit files to be loaded, not both"
        )


def _assemble_result(
    batches: list[pd.DataFrame],
    retained: list[str],
    missing: list[str],
    *,
    ploidy: dict[str, float],
    purity: dict[str, float],
    fga: dict[str, float],
    dip_log_r: dict[str, float],
    epsilon: float,
    adaptive: bool,
    region_union: RegionUnion,
) -> AggregateResult:
    """Union the patient batches and order every output by `retained`."""
    if batches:
        segments = pd.concat(batches, ignore_index=True)
        with Timer() as timer:
            union_matrix = region_union(segments, epsilon=epsilon, adaptive=adaptive)
        logger.info(
            "Unioned %d segments from %d patients into %d regions in %.3f seconds",
            len(segments),
            len(retained),
            union_matrix.shape[1],
            timer.elapsed_time,
        )
        cn = union_matrix.loc[[patient for patient in retained if patient in union_matrix.index]]
    else:
        logger.warning("No patient passed filtering, returning an empty copy-number matrix")
        cn = pd.DataFrame(index=pd.Index([], name=SAMPLE_COLUMN))

    missing = list(dict.fromkeys(missing))
    if missing:
        logger.info("Excluded %d patients: %s", len(missing), ", ".join(missing))
        warnings.warn(MISSING_PATIENTS_MESSAGE, MissingPatientsWarning, stacklevel=4)

    def _ordered(values: dict[str, float]) -> dict[str, float]:
        return {patient: values[patient] for patient in retained if patient in values}

    return AggregateResult(
        cn=cn,
        patients=retained,
        ploidy=_ordered(ploidy),
        purity=_ordered(purity),
        fga=_ordered(fga),
        dip_log_r=_ordered(dip_log_r),
        missing=missing or None,
    )


def _aggregate_fit_files(
    filenames: Sequence[str],
    path: str | Path | None,
    patients: Sequence[str] | None,
    min_purity: float,
    epsilon: float,
    adaptive: bool,
    region_union: RegionUnion,
    fit_loader: PatientFitLoader,
) -> AggregateResult:
    if path is None or not Path(path).exists():
        raise PathNotFoundError(f"The path provided cannot be found: {path}")

    filenames = list(filenames)
    if patients is None:
        patient_names = [patient_name_from_filename(filename) for filename in filenames]
    else:
        patient_names = [str(patient) for patient in patients]
        if len(patient_names) != len(filenames):
            raise LengthMismatchError(
                f"Length of patients ({len(patient_names)}) differs "
                f"from length of filenames ({len(filenames)})"
            )

    duplicated = sorted({name for name in patient_names if patient_names.count(name) > 1})
    if duplicated:
        raise DuplicatePatientError(
            f"Each fit file needs its own patient name, got duplicates: {duplicated}"
        )

    batches: list[pd.DataFrame] = []
    retained: list[str] = []
    missing: list[str] = []
    ploidy: dict[str, float] = {}
    purity: dict[str, float] = {}
    fga: dict[str, float] = {}
    dip_log_r: dict[str, float] = {}

    for filename, patient in zip(filenames, patient_names):
        try:
            fit = fit_loader(Path(path) / filename)
        except FIT_LOAD_ERRORS as e:
            logger.debug("Could not load fit for %s from %s: %s", patient, filename, e)
            missing.append(patient)
            continue

        # FACETS leaves purity and ploidy unset when it cannot estimate them.
        fit_purity = 0.0 if fit.purity is None else fit.purity
        fit_ploidy = 0.0 if fit.ploidy is None else fit.ploidy
        if fit_purity < min_purity:
            logger.debug("Excluding %s: purity %s below %s", patient, fit_purity, min_purity)
            missing.append(patient)
            continue

        calls = complete_fit_calls(fit)
        batch = normalize_fit_calls(calls, patient, fit_ploidy)
        if batch.empty:
            logger.warning("Excluding %s: no segment with a finite seg.mean", patient)
            missing.append(patient)
            continue

        batches.append(batch)
        retained.append(patient)
        purity[patient] = fit_purity
        ploidy[patient] = fit_ploidy
        fga[patient] = fit_fraction_genome_altered(calls)
        dip_log_r[patient] = float("nan") if fit.dip_log_r is None else fit.dip_log_r

    return _assemble_result(
        batches,
        retained,
        missing,
        ploidy=ploidy,
        purity=purity,
        fga=fga,
        dip_log_r=dip_log_r,
        epsilon=epsilon,
        adaptive=adaptive,
        region_union=region_union,
    )


def _aggregate_combined_table(
    seg: pd.DataFrame,
    patients: Sequence[str] | None,
    min_purity: float,
    epsilon: float,
    adaptive: bool,
    region_union: RegionUnion,
) -> AggregateResult:
    check_combined_columns(seg)
    if patients is None:
        requested = list(pd.unique(seg[ID_COLUMN].astype(str)))
    else:
        requested = list(dict.fromkeys(str(patient) for patient in patients))

    filtered = filter_combined_table(seg, requested, min_purity)
    batches = normalize_combined_table(filtered, requested)
    retained = [str(batch[SAMPLE_COLUMN].iloc[0]) for batch in batches]
    purity, ploidy, fga = summarize_combined_table(filtered, retained)

    retained_set = set(retained)
    missing = [patient for patient in requested if patient not in retained_set]

    return _assemble_result(
        batches,
        retained,
        missing,
        ploidy=ploidy,
        purity=purity,
        fga=fga,
        dip_log_r={},
        epsilon=epsilon,
        adaptive=adaptive,
        region_union=region_union,
    )


def aggregate_segments(
    seg: pd.DataFrame | None = None,
    filenames: Sequence[str] | None = None,
    path: str | Path | None = None,
    patients: Sequence[str] | None = None,
    min_purity: float = DEFAULT_MIN_PURITY,
    epsilon: float = DEFAULT_EPSILON,
    adaptive: bool = False,
    region_union: RegionUnion = union_regions,
    fit_loader: PatientFitLoader = load_patient_fit,
) -> AggregateResult:
    """Create a copy-number alteration matrix from segmentation results.

    Parameters
    ----------
    seg : pd.DataFrame, optional
        Combined segmentation table of many patients, with columns
        ID, chrom, loc.start, loc.end, num.mark and seg.mean, and optionally
        purity, ploidy, tcn and lcn.
    filenames : Sequence[str], optional
        Names of per-patient FACETS fit files to load from `path`.
    path : str | Path, optional
        Directory holding `filenames`.  Required with `filenames`.
    patients : Sequence[str], optional
        Patient ids.  With `filenames`, one name per file (defaults to the file
        names without suffix).  With `seg`, the ids to keep, in output order
        (defaults to every ID in the table).
    min_purity : float
        Patients with a purity below this are excluded.  Default 0.3.
    epsilon : float
        Merge tolerance passed to the region union.  Default 0.005.
    adaptive : bool
        Adaptive region merging, passed to the region union.  Default False.
    region_union : RegionUnion
        Callable turning the long segment table into the region matrix.
    fit_loader : PatientFitLoader
        Callable loading one fit file.

    Returns
    -------
    AggregateResult
        The patients x regions matrix with per-patient purity, ploidy, dipLogR
        and fraction genome altered, plus the excluded patients, if any.

    Raises
    ------
    ConfigurationError
        If both or neither of `seg` and `filenames` are given.
    PathNotFoundError
        If `path` does not exist in file mode.
    LengthMismatchError
        If `patients` and `filenames` differ in length.
    DuplicatePatientError
        If two fit files get the same patient name.
    InvalidThresholdError
        If `min_purity` is outside [0, 1].
    """
    _check_input_mode(seg, filenames)
    validate_min_purity(min_purity)
    validate_epsilon(epsilon)

    if seg is not None:
        return _aggregate_combined_table(seg, patients, min_purity, epsilon, adaptive, region_union)

    return _aggregate_fit_files(
        filenames, path, patients, min_purity, epsilon, adaptive, region_union, fit_loader
    )
