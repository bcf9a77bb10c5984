"""Load domain bundles from a delimited text file.

Each line is one certificate.  The first domain on a line becomes the
subject name and the rest become alternate names.  Fields are trimmed
and lower-cased; empty fields and empty lines are dropped.
"""

from __future__ import annotations

import csv
from pathlib import Path

from bulkcerts.core.errors import InputError

DEFAULT_DELIMITER = ","

_FORBIDDEN = frozenset({".", "\n", "\r", '"', "'"})

_ALIASES = {
    "\\t": "\t",
    "tab": "\t",
    "asc30": chr(30),  # record separator
    "asc31": chr(31),  # unit separator
}


def standard_delimiter(delim: str) -> str:
    """Resolve a user-supplied delimiter name to a single character.

    Raises
    ------
    InputError
        If the delimiter is reserved or longer than one character.

    """
    if delim == "":
        delim = DEFAULT_DELIMITER
    if delim in _FORBIDDEN:
        msg = f"{delim!r} is not a valid delimiter for this program"
        raise InputError(msg)
    alias = _ALIASES.get(delim.lower())
    if alias is not None:
        return alias
    if len(delim) != 1:
        msg = f"{delim!r} is not a valid delimiter; can only be 1 character"
        raise InputError(msg)
    return delim


def load_domains(
    path: str | Path,
    delim: str = DEFAULT_DELIMITER,
) -> tuple[list[tuple[str, ...]], set[str]]:
    """Read *path* and return ``(bundles, distinct_domains)``.

    Bundles keep file order so issuance is reproducible; the set allows
    quick membership checks.
    """
    comma = standard_delimiter(delim)
    bundles: list[tuple[str, ...]] = []
    domains: set[str] = set()

    try:
        with Path(path).open(encoding="utf-8", newline="") as fh:
            for row in csv.reader(fh, delimiter=comma):
                cleaned = tuple(v.strip().lower() for v in row if v.strip())
                if cleaned:
                    bundles.append(cleaned)
                    domains.update(cleaned)
    except OSError as exc:
        msg = f"loading input file: {exc}"
        raise InputError(msg) from exc
    except csv.Error as exc:
        msg = f"parsing input file {path}: {exc}"
        raise InputError(msg) from exc

    return bundles, domains
