import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

from library_api.timestamps import to_iso

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARY_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [available|on loan]' lines, or 'No books in library.'
    - json: JSON array of book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Status")
        for b in books:
            status = "[green]available[/]" if b.is_available else "[yellow]on loan[/]"
            table.add_row(b.id, b.title, b.author, status)
        _console.print(table)
    else:
        for b in books:
            status = "available" if b.is_available else "on loan"
            print(f"{b.id} - {b.title} by {b.author} [{status}]")


def print_loan_list(loans: List[Any], empty_message: str = "No loans.") -> None:
    mode = get_output_mode()

    if not loans:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book")
        table.add_column("User")
        table.add_column("Due", style="red")
        for loan in loans:
            table.add_row(loan.id, loan.book_id, loan.user_id, to_iso(loan.due_date))
        _console.print(table)
    else:
        for loan in loans:
            print(f"{loan.id} - book {loan.book_id} user {loan.user_id} due {to_iso(loan.due_date)} [{loan.status}]")


def print_message(data: Dict[str, Any], text: str) -> None:
    """Print ``text`` in plain/rich mode, or ``data`` as JSON in json mode."""
    if get_output_mode() == "json":
        print(json.dumps(data, ensure_ascii=False))
    else:
        print(text)
