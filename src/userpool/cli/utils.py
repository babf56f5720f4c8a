"""
CLI utility helpers: pool resolution and output formatting.
"""

from __future__ import annotations

import functools
import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from userpool.core.datastore import DataStore, create_data_store
from userpool.core.errors import UserPoolError, categorize_error, is_retryable
from userpool.core.logging import get_logger
from userpool.core.models import PoolOptions, UserRecord
from userpool.core.settings import get_settings
from userpool.core.userpool import OPTIONS_KEY, UserPool

console = Console()
err_console = Console(stderr=True)

logger = get_logger(__name__)


# ── Pool helper ──────────────────────────────────────────────────────────


def open_pool(
    data_dir: Path | None = None,
    pool_name: str | None = None,
    username_attributes: Sequence[str] | None = None,
) -> UserPool:
    """Open a pool, falling back to ``USERPOOL_*`` settings for anything unset.

    An existing pool is opened with the options stored in its file unless
    ``username_attributes`` is given explicitly.
    """
    settings = get_settings()
    directory = Path(data_dir or settings.data_dir)
    name = pool_name or settings.pool_name

    if username_attributes:
        options = PoolOptions(username_attributes=tuple(username_attributes))
    elif (directory / f"{name}.json").exists():
        stored = DataStore.open(name, None, directory).get([OPTIONS_KEY]) or {}
        options = PoolOptions.from_dict(stored)
    else:
        options = PoolOptions(username_attributes=tuple(settings.username_attributes))

    factory = functools.partial(create_data_store, directory=directory)
    return UserPool.create(options, factory, name=name)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Turn store errors into a red message and exit code 1."""
    try:
        yield
    except UserPoolError as exc:
        logger.debug("cli_command_failed", **exc.to_dict())
        err_console.print(
            f"[bold red]Error[/bold red] ({categorize_error(exc).value}): {exc.message}"
        )
        if is_retryable(exc):
            err_console.print("[dim]This error is transient; retrying may succeed.[/dim]")
        raise typer.Exit(code=1) from exc


# ── Output helpers ───────────────────────────────────────────────────────


def output_user(user: UserRecord, *, as_json: bool = False) -> None:
    """Render one user record."""
    data = user.to_dict()
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title=f"User {user.username}", show_header=False, pad_edge=False)
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")
    for key, value in data.items():
        if key == "Attributes":
            value = ", ".join(f"{a['Name']}={a['Value']}" for a in value)
        table.add_row(key, str(value))
    console.print(table)


def output_users(users: list[UserRecord], *, as_json: bool = False) -> None:
    """Render a list of user records."""
    if as_json:
        console.print_json(json.dumps([u.to_dict() for u in users], default=str))
        return

    if not users:
        console.print("[dim]No users.[/dim]")
        return

    table = Table(title="Users", pad_edge=False)
    for col in ("Username", "UserStatus", "Enabled", "Attributes"):
        table.add_column(col, overflow="fold")
    for user in users:
        attrs = ", ".join(f"{a.name}={a.value}" for a in user.attributes if a.name != "sub")
        table.add_row(user.username, user.user_status, str(user.enabled), attrs)
    console.print(table)


def output_mapping(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a flat mapping as key/value rows."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return

    table = Table(title=title or None, show_header=False, pad_edge=False)
    table.add_column("Key", style="bold")
    table.add_column("Value", overflow="fold")
    for key, value in data.items():
        table.add_row(str(key), str(value))
    console.print(table)
