"""Command-line front end for the session manager.

Pattern: Prompt Renderer
-------------------------
The CLI is the human-facing boundary.  It does three things:

  1. **Login**: reuse ``VAULT_TOKEN`` or prompt for a Vault login.
  2. **Dispatch**: map a sub-command onto the registry / switch operations.
  3. **Render**: print sessions, confirmations and errors with Rich.

It knows nothing about Vault engines, file formats or handler internals.
Domain errors are caught here, printed, and turned into a non-zero exit.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
import uuid
from typing import Callable

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.auth.vault_authenticator import VaultAuthenticationError, VaultAuthenticator
from cloud_sessions.context import AppContext, build_context
from cloud_sessions.lifecycle.aws import AwsSsoRoleHandler, check_role_arn
from cloud_sessions.lifecycle.errors import (
    LifecycleError,
    SessionNotFound,
    UnsupportedSessionType,
    ValidationError,
)
from cloud_sessions.lifecycle.switch import (
    SwitchResult,
    change_profile,
    change_region,
    delete_session,
    plan_delete,
    switch_credentials,
)
from cloud_sessions.models.session import (
    SESSION_CLASSES,
    Session,
    SessionStatus,
    SessionType,
    profile_id_of,
    split_role_arn,
)
from cloud_sessions.models.workspace import Profile, new_profile
from cloud_sessions.settings import Settings
from cloud_sessions.storage.encrypted_store import StorageError
from cloud_sessions.storage.keys import KeyProviderError

logger = logging.getLogger(__name__)
console = Console()

_STATUS_STYLE = {
    SessionStatus.ACTIVE: "green",
    SessionStatus.PENDING: "yellow",
    SessionStatus.INACTIVE: "dim",
}


def _login(settings: Settings) -> VaultSession:
    """Reuse ``VAULT_TOKEN`` or prompt for credentials and log in to Vault."""
    token = os.environ.get("VAULT_TOKEN")
    if token:
        return VaultSession.from_token(token)

    console.print(f"\n[bold yellow]Vault login[/bold yellow] ({settings.vault_addr})\n")
    username = input("  Username: ").strip()
    password = getpass.getpass("  Password: ")
    if not username or not password:
        console.print("[red]Username and password are required.[/red]")
        sys.exit(1)

    authenticator = VaultAuthenticator(vault_addr=settings.vault_addr, auth_method=settings.auth_method)
    return authenticator.authenticate(username, password)


def _resolve(ctx: AppContext, ref: str) -> Session:
    """Find a session by id, falling back to a unique name."""
    session = ctx.workspace.find_session(ref)
    if session is not None:
        return session
    matches = [s for s in ctx.workspace.sessions() if s.session_name == ref]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise ValidationError(f"Several sessions are named {ref!r}; use the session id")
    raise SessionNotFound(ref)


def _sessions_table(ctx: AppContext) -> Table:
    table = Table(title="Sessions")
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Region")
    table.add_column("Profile")

    for session in ctx.workspace.sessions():
        profile_id = profile_id_of(session)
        profile = ctx.workspace.get_profile_name(profile_id) if session.type.is_aws else "-"
        style = _STATUS_STYLE[session.status]
        table.add_row(
            session.session_id,
            session.session_name,
            session.type.value,
            f"[{style}]{session.status.value}[/{style}]",
            session.region or "-",
            profile,
        )
    return table


def _report_switch(result: SwitchResult, what: str) -> None:
    console.print(f"[green]{what} changed[/green] for [bold]{result.session.session_name}[/bold]")
    if result.restarted:
        console.print("  Session restarted with the new settings.")
    if result.restart_error is not None:
        console.print(f"  [red]Restart failed:[/red] {result.restart_error}")


# -- commands ------------------------------------------------------------------

def cmd_list(ctx: AppContext, args: argparse.Namespace) -> None:
    console.print(_sessions_table(ctx))


def cmd_add(ctx: AppContext, args: argparse.Namespace) -> None:
    session_type = SessionType(args.type)
    fields = {
        "session_id": str(uuid.uuid4()),
        "session_name": args.name,
        "region": args.region,
    }
    if session_type.is_aws:
        fields["profile_id"] = (
            _profile_by_name(ctx, args.profile).id if args.profile else ctx.workspace.get_default_profile_id()
        )
    optional = {
        "vault_role": args.vault_role,
        "role_arn": args.role_arn,
        "parent_session_id": _resolve(ctx, args.parent).session_id if args.parent else None,
        "tenant_id": args.tenant,
        "subscription_id": args.subscription,
    }
    cls = SESSION_CLASSES[session_type]
    allowed = set(cls.__dataclass_fields__)
    for name, value in optional.items():
        if value is None:
            continue
        if name not in allowed:
            raise ValidationError(f"--{name.replace('_', '-')} does not apply to {session_type.value} sessions")
        fields[name] = value
    if "role_arn" in allowed:
        check_role_arn(fields.get("role_arn"))

    session = cls(**fields)
    ctx.workspace.add_session(session)
    console.print(f"[green]Added[/green] {session.session_name} ({session.session_id})")


def cmd_start(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    started = ctx.registry.handler_for(session.type).start(session.session_id)
    console.print(f"[green]Started[/green] {started.session_name}")


def cmd_stop(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    stopped = ctx.registry.handler_for(session.type).stop(session.session_id)
    console.print(f"[green]Stopped[/green] {stopped.session_name}")


def cmd_toggle(ctx: AppContext, args: argparse.Namespace) -> None:
    session = switch_credentials(ctx.registry, _resolve(ctx, args.session).session_id)
    console.print(f"{session.session_name} is now [bold]{session.status.value}[/bold]")


def cmd_delete(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    confirmation = plan_delete(ctx.registry, session.session_id)
    if not args.yes and not Confirm.ask(confirmation.message):
        console.print("Nothing deleted.")
        return
    removed = delete_session(ctx.registry, session.session_id, cascade=not args.keep_trusters)
    console.print(f"[green]Deleted[/green] {', '.join(s.session_name for s in removed)}")


def cmd_region(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    allowed = ctx.settings.aws_regions if session.type.is_aws else ctx.settings.azure_locations
    result = change_region(ctx.registry, session.session_id, args.region, allowed=allowed)
    _report_switch(result, "Default region")


def cmd_profile(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    try:
        profile = _profile_by_name(ctx, args.profile)
    except ValidationError:
        profile = new_profile(args.profile)
    result = change_profile(ctx.registry, session.session_id, profile)
    _report_switch(result, "Profile")


def cmd_profiles(ctx: AppContext, args: argparse.Namespace) -> None:
    table = Table(title="Profiles")
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="bold")
    for profile in ctx.workspace.profiles():
        table.add_row(profile.id, profile.name)
    console.print(table)


def cmd_credentials(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    handler = ctx.registry.aws_handler_for_session(session.session_id)
    credentials = handler.generate_credentials(session.session_id)
    for key, value in credentials.as_env(session.region).items():
        print(f"export {key}={value}")


def cmd_info(ctx: AppContext, args: argparse.Namespace) -> None:
    session = _resolve(ctx, args.session)
    lines = [f"[bold]{session.session_name}[/bold] ({session.type.value})"]
    role_arn = getattr(session, "role_arn", "")
    if role_arn:
        try:
            account_number = split_role_arn(role_arn)[0]
        except ValueError:
            account_number = "[red]invalid role ARN[/red]"
        lines.append(f"Account number: {account_number}")
        lines.append(f"Role ARN: {role_arn}")
    if session.type.is_aws:
        lines.append(f"Profile: {ctx.workspace.get_profile_name(profile_id_of(session))}")
    parent_id = getattr(session, "parent_session_id", "")
    if parent_id:
        parent = ctx.workspace.find_session(parent_id)
        lines.append(f"Parent session: {parent.session_name if parent else parent_id + ' (missing)'}")
    lines.append(f"Started: {session.start_time or '-'}")
    console.print(Panel("\n".join(lines), border_style="blue"))


def cmd_sso_configure(ctx: AppContext, args: argparse.Namespace) -> None:
    if not args.region or not args.portal_url:
        raise ValidationError("Both --region and --portal-url are required")
    ctx.workspace.configure_aws_sso(args.region, args.portal_url, args.expires)
    console.print("[green]AWS SSO configured.[/green]")


def cmd_sso_logout(ctx: AppContext, args: argparse.Namespace) -> None:
    handler = ctx.registry.handler_for(SessionType.AWS_SSO_ROLE)
    if not isinstance(handler, AwsSsoRoleHandler):
        raise UnsupportedSessionType("No AWS SSO handler registered")
    stopped = handler.logout()
    console.print(f"[green]Logged out of AWS SSO[/green], stopped {len(stopped)} session(s).")


COMMANDS: dict[str, Callable[[AppContext, argparse.Namespace], None]] = {
    "list": cmd_list,
    "add": cmd_add,
    "start": cmd_start,
    "stop": cmd_stop,
    "toggle": cmd_toggle,
    "delete": cmd_delete,
    "region": cmd_region,
    "profile": cmd_profile,
    "profiles": cmd_profiles,
    "credentials": cmd_credentials,
    "info": cmd_info,
    "sso-configure": cmd_sso_configure,
    "sso-logout": cmd_sso_logout,
}


def _profile_by_name(ctx: AppContext, name: str) -> Profile:
    for profile in ctx.workspace.profiles():
        if profile.name == name:
            return profile
    raise ValidationError(f"Unknown profile: {name}")


def run_cli(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one sub-command.  Returns the process exit code."""
    try:
        vault_session = _login(settings)
        ctx = build_context(settings, vault_session)
        COMMANDS[args.command](ctx, args)
    except (
        LifecycleError,
        StorageError,
        KeyProviderError,
        VaultAuthenticationError,
    ) as exc:
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        return 1
    return 0
