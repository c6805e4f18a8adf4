import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

BORROWING_COLUMNS = ("borrow_id", "book_id", "member_id", "staff_id", "borrow_date", "due_date",
                     "return_date", "status", "fine_amount")


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    # Invalid values are ignored; the current default stays.
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _plain_line(row: Dict[str, Any]) -> str:
    return (
        f"#{row['borrow_id']} book {row['book_id']} -> member {row['member_id']} "
        f"(staff {row['staff_id']}) {row['borrow_date']}..{row['due_date']} "
        f"{row['status']} returned={row.get('return_date') or '-'} fine={float(row['fine_amount']):.2f}"
    )


def print_borrowings(rows: List[Dict[str, Any]], title: str = "Borrowing") -> None:
    """Print borrowing rows in the current output mode.
    - plain: one line per record, or 'No borrowing records.'
    - json: JSON array
    - rich: Rich table
    """
    mode = get_output_mode()

    if not rows:
        print("No borrowing records.")
        return

    if mode == "json":
        print(json.dumps([{k: r.get(k) for k in BORROWING_COLUMNS} for r in rows], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in BORROWING_COLUMNS:
            table.add_column(column.replace("_", " ").title(), no_wrap=True)
        for r in rows:
            table.add_row(*("" if r.get(c) is None else str(r.get(c)) for c in BORROWING_COLUMNS))
        _console.print(table)
    else:
        for r in rows:
            print(_plain_line(r))


def print_record(row: Dict[str, Any], heading: str) -> None:
    """Print a single borrowing with a heading line."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"message": heading, "record": row}, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {row.get(k)}" for k in BORROWING_COLUMNS)
        _console.print(Panel.fit(content, title=heading, border_style="blue"))
    else:
        print(heading)
        print(_plain_line(row))


def print_error(kind: str, message: str) -> None:
    if get_output_mode() == "json":
        print(json.dumps({"error": kind, "message": message}, ensure_ascii=False))
    elif get_output_mode() == "rich":
        _console.print(f"[bold red]Error ({kind}):[/] {message}")
    else:
        print(f"Error ({kind}): {message}")
