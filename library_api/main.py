import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from library_api.config import settings
from library_api.library import Library
from library_api.ui_helpers import print_book_list, print_loan_list, print_message, set_output_mode

APP_NAME = "Library Loans CLI"

console = Console()
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log output"),
):
    """Global CLI options (output mode, logging)."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database tables."""
    Library()
    print("Database initialized.")


@app.command("list")
def cli_list(available: bool = typer.Option(False, "--available", "-a", help="Only books that can be borrowed")):
    """List the books in the catalog."""
    lib = Library()
    print_book_list(lib.list_books(available=True if available else None))


@app.command("sweep")
def cli_sweep():
    """Mark active loans past their due date as overdue (runs once)."""
    lib = Library()
    count = lib.mark_overdue_loans()
    print_message({"updated": count}, f"Marked {count} loan(s) as overdue.")


@app.command("overdue")
def cli_overdue():
    """List overdue loans."""
    lib = Library()
    print_loan_list(lib.list_overdue_loans(), empty_message="No overdue loans.")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the API with uvicorn."""
    host = host or settings.api_host
    port = port or settings.api_port
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_api.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not start uvicorn. Is it installed?")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
