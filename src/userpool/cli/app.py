"""
Root Typer application for the ``userpool`` CLI.

Every command accepts ``--data-dir`` and ``--pool``; unset values come from
``USERPOOL_*`` settings.
"""

from __future__ import annotations

import time
from pathlib import Path

import typer

from userpool.cli.utils import (
    console,
    err_console,
    handle_errors,
    open_pool,
    output_mapping,
    output_user,
    output_users,
)
from userpool.core.logging import clear_context, configure_logging
from userpool.core.models import Attribute, UserRecord, UserStatus
from userpool.core.settings import get_settings
from userpool.core.userpool import USERS_KEY

app = typer.Typer(
    name="userpool",
    help="userpool: inspect and seed file-backed user pools.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("userpool-store")
        except PackageNotFoundError:
            from userpool import __version__ as v
        typer.echo(f"userpool {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override USERPOOL_LOG_LEVEL."),
) -> None:
    """userpool CLI: create pools, save and look up users."""
    with handle_errors():
        settings = get_settings()
    # Each invocation starts without context left over from an earlier one
    clear_context()
    configure_logging(
        level=log_level or settings.effective_log_level,
        json_format=settings.json_logs,
    )


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("init")
def init_pool(
    data_dir: Path | None = typer.Option(None, "--data-dir", "-d"),
    pool: str | None = typer.Option(None, "--pool", "-p"),
    username_attribute: list[str] | None = typer.Option(
        None,
        "--username-attribute",
        "-u",
        help="Attribute usable as a username (email, phone_number). Repeatable.",
    ),
) -> None:
    """Create the pool file if it does not exist yet."""
    with handle_errors():
        user_pool = open_pool(data_dir, pool, username_attribute)
    console.print(f"[green]Pool ready:[/green] {user_pool.store.path}")


@app.command("show-config")
def show_config(
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show effective settings."""
    with handle_errors():
        settings = get_settings()
    output_mapping(settings.model_dump(mode="json"), as_json=json_out, title="Settings")


@app.command("get-user")
def get_user(
    identifier: str = typer.Argument(..., help="Username, or a configured username attribute value."),
    data_dir: Path | None = typer.Option(None, "--data-dir", "-d"),
    pool: str | None = typer.Option(None, "--pool", "-p"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Look up a user by username, email or phone number."""
    with handle_errors():
        user = open_pool(data_dir, pool).get_user_by_username(identifier)
    if user is None:
        err_console.print(f"[yellow]No user matches[/yellow] {identifier!r}")
        raise typer.Exit(code=1)
    output_user(user, as_json=json_out)


@app.command("list-users")
def list_users(
    data_dir: Path | None = typer.Option(None, "--data-dir", "-d"),
    pool: str | None = typer.Option(None, "--pool", "-p"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List every user in the pool."""
    with handle_errors():
        users = open_pool(data_dir, pool).list_users()
    output_users(users, as_json=json_out)


@app.command("save-user")
def save_user(
    username: str = typer.Argument(...),
    password: str = typer.Option("", "--password"),
    status: str = typer.Option(UserStatus.UNCONFIRMED.value, "--status"),
    attribute: list[str] | None = typer.Option(
        None, "--attribute", "-a", help="name=value. Repeatable."
    ),
    confirmation_code: str | None = typer.Option(None, "--confirmation-code"),
    disabled: bool = typer.Option(False, "--disabled"),
    data_dir: Path | None = typer.Option(None, "--data-dir", "-d"),
    pool: str | None = typer.Option(None, "--pool", "-p"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create or replace a user record."""
    attributes = []
    for item in attribute or []:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected name=value, got {item!r}", param_hint="--attribute")
        attributes.append(Attribute(name, value))

    now = int(time.time() * 1000)
    with handle_errors():
        user_pool = open_pool(data_dir, pool)
        existing = user_pool.store.get([USERS_KEY, username]) or {}
        stored = user_pool.save_user(
            UserRecord(
                username=username,
                password=password,
                user_status=status,
                attributes=attributes,
                user_create_date=existing.get("UserCreateDate", now),
                user_last_modified_date=now,
                enabled=not disabled,
                confirmation_code=confirmation_code,
            )
        )
    output_user(stored, as_json=json_out)


@app.command("delete-user")
def delete_user(
    username: str = typer.Argument(...),
    data_dir: Path | None = typer.Option(None, "--data-dir", "-d"),
    pool: str | None = typer.Option(None, "--pool", "-p"),
) -> None:
    """Delete a user by username."""
    with handle_errors():
        deleted = open_pool(data_dir, pool).delete_user(username)
    if not deleted:
        err_console.print(f"[yellow]No user named[/yellow] {username!r}")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted[/green] {username}")


if __name__ == "__main__":
    app()
