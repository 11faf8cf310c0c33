"""Output formatters for drift reports."""

import csv
import io
import json

from rich.console import Console
from rich.table import Table
from rich.text import Text

from cfndrift.models import DetailStyle, DriftReport, DriftRow

DETAIL_STYLES = {
    DetailStyle.PLAIN: "",
    DetailStyle.POSITIVE: "green",
    DetailStyle.WARNING: "yellow",
}

CHANGE_TYPE_STYLES = {
    "MODIFIED": "yellow",
    "DELETED": "red",
    "UNMANAGED": "cyan",
}

NO_DRIFT = "No drift detected."

COLUMNS = ("Logical ID", "Resource Type", "Change Type", "Details")


def _escape_md_cell(value: str) -> str:
    """Escape characters that break markdown table cells."""
    return value.replace("|", "\\|").replace("\n", "<br>")


def _details_text(row: DriftRow) -> Text:
    text = Text()
    for i, detail in enumerate(row.details):
        if i:
            text.append("\n")
        text.append(detail.text, style=DETAIL_STYLES[detail.style])
    return text


def format_table(report: DriftReport) -> str:
    """Format a report as a Rich table, returned as plain text."""
    if not report.has_drift:
        return f"{report.title}\n{NO_DRIFT}"

    console = Console(record=True, width=160)
    table = Table(title=report.title, show_lines=True)
    for column in COLUMNS:
        table.add_column(column, overflow="fold")

    for row in report.rows:
        table.add_row(
            row.logical_id,
            row.resource_type,
            Text(row.change_type, style=CHANGE_TYPE_STYLES.get(row.change_type, "")),
            _details_text(row),
        )

    console.print(table)
    return console.export_text()


def format_json(report: DriftReport) -> str:
    """Format a report as JSON."""
    return json.dumps(
        {
            "stack_name": report.stack_name,
            "title": report.title,
            "timestamp": report.timestamp.isoformat(),
            "has_drift": report.has_drift,
            "rows": [
                {
                    "logical_id": row.logical_id,
                    "resource_type": row.resource_type,
                    "change_type": row.change_type,
                    "details": [
                        {"text": d.text, "style": d.style.value} for d in row.details
                    ],
                }
                for row in report.rows
            ],
        },
        indent=2,
    )


def format_markdown(report: DriftReport) -> str:
    """Format a report as Markdown."""
    lines = [f"## {_escape_md_cell(report.title)}", ""]
    if not report.has_drift:
        lines.append(NO_DRIFT)
        return "\n".join(lines)

    lines.append("| " + " | ".join(COLUMNS) + " |")
    lines.append("|" + "|".join("---" for _ in COLUMNS) + "|")
    for row in report.rows:
        details = _escape_md_cell("\n".join(row.detail_lines()))
        lines.append(
            f"| {_escape_md_cell(row.logical_id)} | {row.resource_type} "
            f"| {row.change_type} | {details} |"
        )
    return "\n".join(lines)


def format_csv(report: DriftReport) -> str:
    """Format a report as CSV, one line per row with details joined by newlines."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(COLUMNS)
    for row in report.rows:
        writer.writerow(
            [row.logical_id, row.resource_type, row.change_type, "\n".join(row.detail_lines())]
        )
    return buffer.getvalue()


FORMATTERS = {
    "table": format_table,
    "json": format_json,
    "markdown": format_markdown,
    "csv": format_csv,
}
