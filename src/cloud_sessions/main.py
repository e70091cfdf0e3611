"""CLI entry point: parse arguments, configure logging, load settings."""

from __future__ import annotations

import argparse
import logging
import sys

from cloud_sessions.models.session import SessionType
from cloud_sessions.settings import SettingsError, load_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloud-sessions",
        description="Manage AWS and Azure credential sessions brokered by Vault",
    )
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="Show all sessions")
    sub.add_parser("profiles", help="Show credential profiles")

    add = sub.add_parser("add", help="Add a session")
    add.add_argument("--type", required=True, choices=[t.value for t in SessionType])
    add.add_argument("--name", required=True)
    add.add_argument("--region")
    add.add_argument("--profile", help="Profile name (AWS only, default profile if omitted)")
    add.add_argument("--vault-role")
    add.add_argument("--role-arn")
    add.add_argument("--parent", help="Parent session id or name (chained roles)")
    add.add_argument("--tenant")
    add.add_argument("--subscription")

    for name, help_text in (
        ("start", "Start a session"),
        ("stop", "Stop a session"),
        ("toggle", "Start an inactive session or stop an active one"),
        ("credentials", "Print temporary credentials as export lines (AWS only)"),
        ("info", "Show account number, role ARN and profile"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("session", help="Session id or name")

    delete = sub.add_parser("delete", help="Delete a session")
    delete.add_argument("session", help="Session id or name")
    delete.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    delete.add_argument(
        "--keep-trusters",
        action="store_true",
        help="Do not delete truster sessions that depend on this one",
    )

    region = sub.add_parser("region", help="Change the default region / location")
    region.add_argument("session", help="Session id or name")
    region.add_argument("region")

    profile = sub.add_parser("profile", help="Change the credential profile (AWS only)")
    profile.add_argument("session", help="Session id or name")
    profile.add_argument("profile", help="Profile name; created if it does not exist")

    sso = sub.add_parser("sso-configure", help="Configure the AWS SSO portal")
    sso.add_argument("--region", required=True)
    sso.add_argument("--portal-url", required=True)
    sso.add_argument("--expires", default=None, help="ISO-8601 expiry of the current SSO login")

    sub.add_parser("sso-logout", help="Stop SSO sessions and forget the SSO login")
    return parser


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except SettingsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    from cloud_sessions.prompt.cli import run_cli

    sys.exit(run_cli(args, settings))


if __name__ == "__main__":
    main()
