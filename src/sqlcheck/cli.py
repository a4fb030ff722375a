#!/usr/bin/env python3
"""Command line front end for the SQL validation engine."""
import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typing_extensions import Annotated

from sqlcheck.common.settings import settings
from sqlcheck.models import Dialect, ValidationResponse
from sqlcheck.service import ValidationService, supported_dialects

app = typer.Typer(
    name="sqlcheck",
    help="Validate SQL statements against live PostgreSQL, MySQL, SQLite and SQL Server databases.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

# Shared Options
DialectOption = Annotated[Dialect, typer.Option("--dialect", "-d", help="Target database engine")]
DatabaseOption = Annotated[str, typer.Option("--database", help="Database name (file path for sqlite)")]
HostOption = Annotated[Optional[str], typer.Option("--host", help="Server host")]
PortOption = Annotated[Optional[int], typer.Option("--port", help="Server port (dialect default when omitted)")]
UserOption = Annotated[Optional[str], typer.Option("--username", "-u", help="Login name")]
PasswordOption = Annotated[Optional[str], typer.Option("--password", "-p", envvar="SQLCHECK_PASSWORD", help="Login password")]
UrlOption = Annotated[Optional[str], typer.Option("--url", help="SQLAlchemy URL overriding the individual fields")]
SslOption = Annotated[bool, typer.Option("--ssl", help="Negotiate TLS")]


def _connection(dialect, database, host, port, username, password, url, ssl) -> dict:
    return {
        "dialect": dialect.value,
        "database": database,
        "host": host,
        "port": port,
        "username": username,
        "password": password,
        "connectionString": url,
        "ssl": ssl,
    }


@app.callback()
def global_callback(
    env: Annotated[Optional[str], typer.Option("--env", "-e", help="Environment name; loads .env.<name>")] = None,
):
    """
    sqlcheck CLI entry point.
    """
    if env:
        settings.configure_env(env)


def _render(response: ValidationResponse) -> None:
    if not response.success:
        console.print(f"[bold red]✘ {response.error.code.value}[/bold red] {response.error.message}")
        if response.error.details:
            console.print(f"  {response.error.details}")
        return

    result = response.data
    verdict = "[bold green]VALID[/bold green]" if result.is_valid else "[bold red]INVALID[/bold red]"
    console.print(Panel(f"{verdict}  request {response.request_id}", title="sqlcheck"))

    sec = result.security_check
    console.print(f"Read-only: {sec.is_read_only}")
    for op in sec.blocked_operations:
        console.print(f"[red]Blocked:[/red] {op}")
    for warning in sec.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    if result.syntax_check.error:
        console.print(f"[red]Syntax error:[/red] {result.syntax_check.error}")

    if result.execution_plan:
        for warning in result.execution_plan.warnings:
            console.print(f"[yellow]Plan:[/yellow] {warning}")

    sample = result.sample_results
    if sample and sample.rows:
        table = Table(title=f"Sample ({len(sample.rows)} rows, {sample.execution_time:.1f} ms)")
        names = list(sample.rows[0].keys())
        for name in names:
            table.add_column(name)
        for row in sample.rows:
            table.add_row(*[str(row.get(name)) for name in names])
        console.print(table)

    if result.metadata:
        meta = result.metadata
        console.print(
            f"Tables: {', '.join(meta.affected_tables) or '-'}  "
            f"Complexity: {meta.complexity}  Estimated rows: {meta.estimated_rows}"
        )


@app.command()
def validate(
    sql: Annotated[str, typer.Argument(help="SQL statement to validate")],
    dialect: DialectOption,
    database: DatabaseOption,
    host: HostOption = None,
    port: PortOption = None,
    username: UserOption = None,
    password: PasswordOption = None,
    url: UrlOption = None,
    ssl: SslOption = False,
    readonly: Annotated[bool, typer.Option("--readonly/--allow-writes", help="Require a read-only statement")] = True,
    timeout: Annotated[int, typer.Option("--timeout", help="Per-statement deadline in ms")] = 30000,
    max_rows: Annotated[int, typer.Option("--max-rows", help="Sample row cap")] = 1000,
    explain: Annotated[bool, typer.Option("--explain/--no-explain", help="Retrieve the execution plan")] = True,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw response as JSON")] = False,
):
    """
    Validate a SQL statement against a live database.
    """
    service = ValidationService()
    try:
        response = service.validate({
            "sql": sql,
            "connection": _connection(dialect, database, host, port, username, password, url, ssl),
            "options": {
                "readonly": readonly,
                "timeout": timeout,
                "maxRows": max_rows,
                "explain": explain,
            },
        })
    finally:
        service.shutdown()

    if as_json:
        console.print_json(response.model_dump_json(by_alias=True))
    else:
        _render(response)

    if not (response.success and response.data.is_valid):
        raise typer.Exit(code=1)


@app.command("test-connection")
def test_connection(
    dialect: DialectOption,
    database: DatabaseOption,
    host: HostOption = None,
    port: PortOption = None,
    username: UserOption = None,
    password: PasswordOption = None,
    url: UrlOption = None,
    ssl: SslOption = False,
):
    """
    Check that a database accepts connections.
    """
    service = ValidationService()
    try:
        response = service.test_connection(
            _connection(dialect, database, host, port, username, password, url, ssl)
        )
    finally:
        service.shutdown()

    if response.success and response.data.connected:
        console.print(f"[bold green]✔ Connected[/bold green] to {dialect.value} database '{database}'")
        return
    console.print(f"[bold red]✘ Could not connect[/bold red] to {dialect.value} database '{database}'")
    raise typer.Exit(code=1)


@app.command()
def dialects(
    as_json: Annotated[bool, typer.Option("--json", help="Print as JSON")] = False,
):
    """
    List supported database dialects.
    """
    supported = supported_dialects()
    if as_json:
        console.print_json(json.dumps([d.model_dump(mode="json") for d in supported]))
        return

    table = Table(title="Supported Dialects")
    table.add_column("Dialect", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Features", style="green")
    for info in supported:
        table.add_row(info.value.value, info.name, ", ".join(info.features))
    console.print(table)


if __name__ == "__main__":
    app()
