"""
Read rows from a named Excel table (or a CSV file) as dictionaries
"""

import os
import csv
from typing import Dict, List

from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string, range_boundaries


def column_index(letters: str) -> int:
    """Translate a column name such as 'A' or 'AA' into its 1-based index"""
    return column_index_from_string(letters.upper())


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def excel_table_to_rows(path: str, sheet_name: str, table_name: str) -> List[Dict[str, str]]:
    """
    Convert an Excel table to a list of rows keyed by column name.

    Column names come from the table definition with spaces removed
    ("Table Name" -> "TableName"). Rows are returned in sheet order,
    header row and totals rows excluded.
    """
    # Table definitions are not available in read-only mode
    workbook = load_workbook(path, data_only=True)
    try:
        if sheet_name not in workbook.sheetnames:
            raise ValueError(f"Sheet '{sheet_name}' not found in {path}")
        sheet = workbook[sheet_name]

        table = next((t for t in sheet.tables.values() if t.displayName == table_name), None)
        if table is None:
            raise ValueError(f"Table '{table_name}' not found in sheet '{sheet_name}'")

        min_col, min_row, max_col, max_row = range_boundaries(table.ref)
        max_row -= table.totalsRowCount or 0
        header_rows = 1 if table.headerRowCount is None else table.headerRowCount

        if table.tableColumns:
            column_names = [column.name.replace(" ", "") for column in table.tableColumns]
        else:
            header = next(sheet.iter_rows(min_row=min_row, max_row=min_row,
                                          min_col=min_col, max_col=max_col, values_only=True))
            column_names = [_cell_text(value).replace(" ", "") for value in header]

        rows = []
        for values in sheet.iter_rows(min_row=min_row + header_rows, max_row=max_row,
                                      min_col=min_col, max_col=max_col, values_only=True):
            rows.append({name: _cell_text(value) for name, value in zip(column_names, values)})
        return rows
    finally:
        workbook.close()


def csv_to_rows(path: str) -> List[Dict[str, str]]:
    """Read a CSV file with a header row, column names with spaces removed"""
    with open(path, newline='', encoding='utf-8-sig') as csv_file:
        reader = csv.DictReader(csv_file, skipinitialspace=True)
        return [
            {(name or "").replace(" ", ""): (value or "") for name, value in row.items()}
            for row in reader
        ]


def read_table_rows(path: str, sheet_name: str, table_name: str) -> List[Dict[str, str]]:
    """Read table rows from a workbook, or from a CSV file (sheet and table ignored)"""
    if not os.path.exists(path):
        raise FileNotFoundError(f"{path} file not found")
    if os.path.splitext(path)[1].lower() == ".csv":
        return csv_to_rows(path)
    return excel_table_to_rows(path, sheet_name, table_name)
