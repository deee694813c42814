"""Spreadsheet export of transaction listings.

Produces a single-sheet ``.xlsx`` workbook with a bold header row followed by
one row per transaction, in the order the caller supplies them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .data_manager import FIELDS, Transaction


SHEET_TITLE = "Transactions"

EXPORT_COLUMNS: Sequence[str] = tuple(spec.cache_key for spec in FIELDS)


def transaction_row(transaction: Transaction) -> list:
    """Flatten a transaction into cell values matching ``EXPORT_COLUMNS``."""

    row = []
    for spec in FIELDS:
        value = getattr(transaction, spec.attr)
        if value is None:
            row.append(None)
        elif spec.kind == "enum":
            row.append(value.value)
        elif spec.kind == "amount":
            row.append(float(value))
        else:
            row.append(value)
    return row


def export_transactions(
    transactions: Iterable[Transaction],
    destination: Path,
    *,
    overwrite: bool = False,
) -> Path:
    """Write ``transactions`` to an ``.xlsx`` workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing export: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = SHEET_TITLE

    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(EXPORT_COLUMNS, start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font

    count = 0
    for transaction in transactions:
        worksheet.append(transaction_row(transaction))
        count += 1

    workbook.save(destination)
    log.info("Exported %d transactions to '%s'", count, destination)
    return destination


__all__ = ["SHEET_TITLE", "EXPORT_COLUMNS", "transaction_row", "export_transactions"]
