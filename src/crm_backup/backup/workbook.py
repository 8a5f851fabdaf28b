"""Tabular rendering of a bundle as an xlsx workbook.

One README sheet with the bundle metadata, then one sheet per table.
Sheet names are cut to Excel's 31-character limit; when that makes two
names collide the later one gets a ``~N`` suffix and the README lists
which sheet holds which table.
"""

import json
from io import BytesIO
from typing import Any, Iterable

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill

from crm_backup.backup.models import BundleMeta

MAX_SHEET_NAME = 31
README_SHEET = "README"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def sheet_name(table: str) -> str:
    """Sheet title for a table name."""
    return table[:MAX_SHEET_NAME]


def sheet_names(tables: Iterable[str]) -> dict[str, str]:
    """Assign each table a distinct sheet title.

    Excel compares titles case-insensitively, so uniqueness is checked on
    the lowercased name.
    """
    taken = {README_SHEET.lower()}
    names: dict[str, str] = {}
    for table in tables:
        name = sheet_name(table)
        n = 1
        while name.lower() in taken:
            suffix = f"~{n}"
            name = table[: MAX_SHEET_NAME - len(suffix)] + suffix
            n += 1
        taken.add(name.lower())
        names[table] = name
    return names


def _cell_value(value: Any) -> Any:
    """Render nested values (JSON columns, arrays) as JSON text.

    Control characters that XML cannot carry are dropped from text.
    """
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=str)
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _write_cell(worksheet, row: int, column: int, value: Any):
    cell = worksheet.cell(row=row, column=column, value=_cell_value(value))
    # Text starting with "=" is data, not a formula.
    if cell.data_type == "f":
        cell.data_type = "s"
    return cell


def _headers(rows: list[dict]) -> list[str]:
    headers: dict[str, None] = {}
    for row in rows:
        for key in row:
            headers.setdefault(key, None)
    return list(headers)


def build_workbook(meta: BundleMeta, tables: dict[str, list[dict]]) -> openpyxl.Workbook:
    """Build the workbook for a bundle's metadata and table rows."""
    workbook = openpyxl.Workbook()
    readme = workbook.active
    readme.title = README_SHEET

    readme.append(["CRM Backup"])
    readme["A1"].font = Font(bold=True)
    readme.append(["Version", meta.version])
    readme.append(["Created At", meta.created_at])
    readme.append(["Created By", meta.created_by or ""])
    readme.append(["Modules", ", ".join(meta.include_modules)])
    readme.append(["Include Files", "Yes" if meta.include_files else "No"])

    titles = sheet_names(tables)
    renamed = {table: title for table, title in titles.items() if title != table}
    if renamed:
        readme.append([])
        readme.append(["Table", "Sheet"])
        readme.cell(row=readme.max_row, column=1).font = Font(bold=True)
        readme.cell(row=readme.max_row, column=2).font = Font(bold=True)
        for table, title in renamed.items():
            readme.append([table, title])

    for table, rows in tables.items():
        worksheet = workbook.create_sheet(title=titles[table])
        headers = _headers(rows)
        if not headers:
            continue

        for col, header in enumerate(headers, 1):
            cell = _write_cell(worksheet, 1, col, header)
            cell.font = Font(bold=True)
            cell.fill = PatternFill(start_color="CCCCCC", end_color="CCCCCC", fill_type="solid")

        for row_idx, row in enumerate(rows, 2):
            for col, header in enumerate(headers, 1):
                _write_cell(worksheet, row_idx, col, row.get(header))

    return workbook


def render_workbook(meta: BundleMeta, tables: dict[str, list[dict]]) -> bytes:
    """Serialize the bundle workbook to xlsx bytes."""
    buffer = BytesIO()
    build_workbook(meta, tables).save(buffer)
    return buffer.getvalue()
