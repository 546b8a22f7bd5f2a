"""
PRODLINE Data Loader Module
Reads customer utility tables and product margins from CSV

Version: 1.2
Date: October 2026

File Formats:
-------------
Utility File (.csv):
- Optional header row (detected when its last cell is not a number)
- Optional leading identifier column named customer, customer_id or id
- One row per customer: status quo utility, then one utility per candidate

Margin File (.csv), any of:
- One row of M margins (optionally under a header of product names)
- One column of M margins (optionally under a "margin" header)
- Two columns "product,margin"; rows are matched to utility columns by name

Both loaders accept either a file path or the raw file content, like the
upload widgets of the Streamlit app provide.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from prodline_core import InvalidInputError, UtilityData

logger = logging.getLogger(__name__)

CASE_DATA_DIR = Path(__file__).parent / "case_data"
WEEK8_UTILITY_FILE = "week8_utilities.csv"
WEEK8_MARGIN_FILE = "week8_margins.csv"

ID_COLUMNS = ('customer', 'customer_id', 'id')


# =============================================================================
# DATA STRUCTURES FOR LOADED DATA
# =============================================================================

@dataclass
class LoadedUtilityTable:
    """Raw utility table before margins are attached."""
    utilities: np.ndarray            # Shape: (num_customers, num_products + 1)
    customer_ids: Optional[List[str]] = None
    status_quo_name: str = "Status Quo"
    product_names: Optional[List[str]] = None

    @property
    def num_customers(self) -> int:
        return self.utilities.shape[0]

    @property
    def num_products(self) -> int:
        return self.utilities.shape[1] - 1


def get_case_data_path(filename: str) -> Path:
    """Get path to built-in case data files."""
    case_path = CASE_DATA_DIR / filename
    if case_path.exists():
        return case_path
    # Fallback for running from a checkout root
    fallback = Path("case_data") / filename
    if fallback.exists():
        return fallback
    return case_path


# =============================================================================
# CSV READING
# =============================================================================

def _read_table(filepath_or_content, is_file_content: bool, label: str) -> Tuple[pd.DataFrame, bool]:
    """Read a CSV as strings; returns the table and whether it had a header."""
    source = io.StringIO(filepath_or_content) if is_file_content else filepath_or_content
    try:
        raw = pd.read_csv(source, header=None, dtype=str, skipinitialspace=True)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise InvalidInputError(f"Could not read {label}: {e}") from e

    # Trailing commas leave empty columns; missing cells elsewhere are reported below
    while raw.shape[1] > 1 and raw.iloc[:, -1].isna().all():
        raw = raw.iloc[:, :-1]
    if raw.empty:
        raise InvalidInputError(f"{label} contains no data")

    has_header = pd.isna(pd.to_numeric(raw.iloc[0, -1], errors='coerce'))
    if has_header:
        raw.columns = [str(c).strip() for c in raw.iloc[0]]
        raw = raw.iloc[1:].reset_index(drop=True)
        if raw.empty:
            raise InvalidInputError(f"{label} has a header but no data rows")
    return raw, has_header


def decode_uploaded_content(raw: bytes, label: str) -> str:
    """Decode an uploaded file (UTF-8, optionally with a BOM)."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidInputError(f"{label} is not UTF-8 text: {e}") from e


def _to_numeric(table: pd.DataFrame, label: str) -> np.ndarray:
    values = table.apply(lambda col: pd.to_numeric(col.str.strip(), errors='coerce'))
    bad_columns = [str(c) for c in values.columns[values.isna().any()]]
    if bad_columns:
        raise InvalidInputError(
            f"{label}: non-numeric or missing values in column(s) {', '.join(bad_columns)}"
        )
    return values.to_numpy(dtype=float)


# =============================================================================
# UTILITY FILE PARSER
# =============================================================================

def load_utility_file(filepath_or_content,
                      is_file_content: bool = False) -> LoadedUtilityTable:
    """
    Load a customer utility table.

    Args:
        filepath_or_content: Either a file path or raw file content string
        is_file_content: If True, first arg is content; if False, it's a path

    Returns:
        LoadedUtilityTable with column 0 = status quo
    """
    table, has_header = _read_table(filepath_or_content, is_file_content, "utility file")

    customer_ids = None
    if has_header and str(table.columns[0]).lower() in ID_COLUMNS:
        customer_ids = table.iloc[:, 0].str.strip().tolist()
        table = table.iloc[:, 1:]

    utilities = _to_numeric(table, "utility file")
    if utilities.shape[1] < 2:
        raise InvalidInputError(
            "Utility file needs a status quo column and at least one candidate column"
        )

    status_quo_name = "Status Quo"
    product_names = None
    if has_header:
        status_quo_name = str(table.columns[0])
        product_names = [str(c) for c in table.columns[1:]]

    logger.info("Loaded utilities: %d customers, %d candidates",
                utilities.shape[0], utilities.shape[1] - 1)

    return LoadedUtilityTable(
        utilities=utilities,
        customer_ids=customer_ids,
        status_quo_name=status_quo_name,
        product_names=product_names
    )


# =============================================================================
# MARGIN FILE PARSER
# =============================================================================

def load_margin_file(filepath_or_content,
                     is_file_content: bool = False) -> Tuple[List[float], Optional[List[str]]]:
    """
    Load candidate margins.

    Returns:
        (margins, product names or None)
    """
    table, has_header = _read_table(filepath_or_content, is_file_content, "margin file")
    lowered = [str(c).lower() for c in table.columns]

    names = None
    if has_header and 'margin' in lowered:
        values = table.iloc[:, [lowered.index('margin')]]
        if 'product' in lowered:
            names = table.iloc[:, lowered.index('product')].str.strip().tolist()
    elif table.shape[0] == 1:
        values = table.T
        if has_header:
            names = [str(c) for c in table.columns]
    elif table.shape[1] == 1:
        values = table
    elif table.shape[1] == 2:
        names = table.iloc[:, 0].str.strip().tolist()
        values = table.iloc[:, [1]]
    else:
        raise InvalidInputError(
            f"Margin file must hold one row or one column of margins, got shape {table.shape}"
        )

    margins = _to_numeric(values, "margin file").ravel().tolist()
    logger.info("Loaded %d margins", len(margins))
    return margins, names


def parse_margin_values(text: str) -> List[float]:
    """Parse a comma-separated list of margins such as '8,7,8,6,9,7'."""
    parts = [p.strip() for p in text.split(',') if p.strip()]
    if not parts:
        raise InvalidInputError("No margin values given")
    try:
        return [float(p) for p in parts]
    except ValueError as e:
        raise InvalidInputError(f"Invalid margin list {text!r}: {e}") from e


def _align_margins(margins: Sequence[float],
                   margin_names: Optional[List[str]],
                   product_names: Optional[List[str]]) -> List[float]:
    """Reorder named margins to match the utility columns."""
    if not margin_names or not product_names or margin_names == product_names:
        return list(margins)
    if sorted(margin_names) != sorted(product_names):
        raise InvalidInputError(
            f"Margin products {margin_names} do not match utility columns {product_names}"
        )
    by_name = dict(zip(margin_names, margins))
    return [by_name[name] for name in product_names]


# =============================================================================
# COMBINED LOADER FUNCTION
# =============================================================================

def load_prodline_data(
    utility_filepath_or_content,
    margin_filepath_or_content=None,
    margins: Optional[Sequence[float]] = None,
    utility_is_content: bool = False,
    margin_is_content: bool = False
) -> Tuple[UtilityData, Dict[str, Any]]:
    """
    Load utilities and margins into a validated UtilityData.

    Margins come either from a margin file or from an explicit list
    (exactly one of the two).

    Returns:
        Tuple of:
        - UtilityData ready for optimization
        - Metadata dict with parsing info
    """
    if (margin_filepath_or_content is None) == (margins is None):
        raise InvalidInputError("Provide exactly one of a margin file or a margin list")

    table = load_utility_file(utility_filepath_or_content, is_file_content=utility_is_content)

    if margins is None:
        margin_values, margin_names = load_margin_file(
            margin_filepath_or_content, is_file_content=margin_is_content
        )
        margin_source = 'file'
    else:
        margin_values, margin_names = list(margins), None
        margin_source = 'list'

    margin_values = _align_margins(margin_values, margin_names, table.product_names)

    data = UtilityData(
        utilities=table.utilities,
        margins=margin_values,
        product_names=table.product_names,
        customer_ids=table.customer_ids,
        status_quo_name=table.status_quo_name
    )

    metadata = {
        'num_customers': data.num_customers,
        'num_products': data.num_products,
        'product_names': data.product_names,
        'status_quo_name': data.status_quo_name,
        'margins': data.margins.tolist(),
        'margin_source': margin_source,
    }

    return data, metadata


def load_week8_case() -> Tuple[UtilityData, Dict[str, Any]]:
    """Load the built-in Week 8 product line case."""
    data, metadata = load_prodline_data(
        get_case_data_path(WEEK8_UTILITY_FILE),
        margin_filepath_or_content=get_case_data_path(WEEK8_MARGIN_FILE)
    )
    metadata['source'] = 'Week 8 Case'
    return data, metadata


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def describe_loaded_data(data: UtilityData, metadata: Dict[str, Any]) -> str:
    """Generate a summary description of loaded data."""
    lines = []
    lines.append("=" * 60)
    lines.append("PRODLINE DATA SUMMARY")
    lines.append("=" * 60)

    lines.append(f"\n[Source Data]")
    lines.append(f"  Source: {metadata.get('source', 'files')}")
    lines.append(f"  Customers: {metadata['num_customers']}")
    lines.append(f"  Candidate products: {metadata['num_products']}")
    lines.append(f"  Margins from: {metadata['margin_source']}")

    lines.append(f"\n[Candidates]")
    for j, name in enumerate(data.product_names):
        utils = data.utilities[:, j + 1]
        beats_sq = int((utils > data.utilities[:, 0]).sum())
        lines.append(
            f"  {j+1}. {name}: margin {data.margins[j]:g}, "
            f"mean utility {utils.mean():.2f}, preferred to status quo by {beats_sq}"
        )

    lines.append(f"\n[Status Quo: {data.status_quo_name}]")
    lines.append(f"  Mean utility: {data.utilities[:, 0].mean():.2f}")
    lines.append("=" * 60)

    return "\n".join(lines)


def validate_data_consistency(data: UtilityData) -> List[str]:
    """
    Validate loaded data for modelling issues that are not hard errors.

    Returns list of warning messages (empty if no issues).
    """
    warnings = []
    sq = data.utilities[:, 0]
    candidates = data.utilities[:, 1:]

    for j, name in enumerate(data.product_names):
        if not (candidates[:, j] > sq).any():
            warnings.append(f"{name}: no customer prefers it to the status quo")
        if data.margins[j] < 0:
            warnings.append(f"{name}: negative margin {data.margins[j]:g}")

    for i in np.flatnonzero((candidates <= sq[:, None]).all(axis=1)):
        warnings.append(f"Customer {data.customer_ids[i]}: status quo beats every candidate")

    seen = {}
    for j in range(data.num_products):
        key = tuple(candidates[:, j])
        if key in seen:
            warnings.append(
                f"{data.product_names[j]}: identical utilities to {data.product_names[seen[key]]}"
            )
        else:
            seen[key] = j

    return warnings


# =============================================================================
# TESTING
# =============================================================================

if __name__ == "__main__":
    print("PRODLINE Data Loader Module - Test")
    print("=" * 60)

    data, metadata = load_week8_case()
    print(describe_loaded_data(data, metadata))

    warnings = validate_data_consistency(data)
    if warnings:
        print("\nWarnings:")
        for w in warnings:
            print(f"  - {w}")
    else:
        print("\nNo validation warnings.")
