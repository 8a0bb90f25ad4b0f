"""Load serialized per-patient FACETS fits."""

import gzip
import logging
import zlib
from collections.abc import Callable
from pathlib import Path

import msgspec
from msgspec import json as mjson

from cnaggregate.segment_types import PatientFit

logger = logging.getLogger(__name__)

FIT_FILE_SUFFIXES = {".json", ".gz"}

# Failures that mark a single patient as missing rather than abort the run.
FIT_LOAD_ERRORS: tuple[type[Exception], ...] = (
    OSError,
    EOFError,
    zlib.error,
    msgspec.DecodeError,
)

PatientFitLoader = Callable[[Path], PatientFit]

_decoder = mjson.Decoder(PatientFit)


def load_patient_fit(fit_path: Path) -> PatientFit:
    """Decode a PatientFit from a JSON file, gunzipping `.gz` files first."""
    if fit_path.suffix == ".gz":
        with gzip.open(fit_path, "rb") as f:
            payload = f.read()
    else:
        payload = fit_path.read_bytes()

    fit = _decoder.decode(payload)
    logger.debug("Loaded fit with %d segments from %s", len(fit.cncf), fit_path)
    return fit


def patient_name_from_filename(filename: str) -> str:
    """Strip fit file suffixes (e.g. `.json.gz`) to get a patient name."""
    path = Path(filename)
    while path.suffix.lower() in FIT_FILE_SUFFIXES:
        path = path.with_suffix("")
    return path.name
