#!/usr/bin/env python3
"""
================================================================================
copydata/cli.py - Command Line Entry Point
================================================================================

Usage:
    python -m copydata check "bin, conf" [--root /srv/data]
    python -m copydata copy "bin, conf" --root /srv/data --workspace ./ws \
        [--executable] [--delete-after] [--run "make test"]
    python -m copydata agent [--host 127.0.0.1] [--port 7781]
    python -m copydata agent-socket --path /run/copydata.sock

The allowed root is taken from --root or COPYDATA_ALLOWED_ROOT. The execution
channel is taken from COPYDATA_CHANNEL_ENDPOINT (default: in-process).
================================================================================
"""

import argparse
import logging
import shlex
import subprocess
import sys
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from .config import AgentConfig, CopyDataConfig, HostConfig
from .copy_engine import run_build
from .errors import CopyDataError
from .telemetry import flush_events
from .units import RoleAuthorizer, UnitExecutor
from .validation import check_folder_path, check_folder_path_exists

console = Console()

DEFAULT_AGENT_PORT = 7781


def _host_config(args) -> HostConfig:
    if args.root:
        kwargs = {"allowed_root": args.root}
        if args.platform:
            kwargs["platform"] = args.platform
        return HostConfig(**kwargs)
    return HostConfig.from_env()


def cmd_check(args) -> int:
    if args.root:
        result = check_folder_path_exists(args.paths, _host_config(args),
                                          delimiter=args.delimiter)
    else:
        result = check_folder_path(args.paths, args.platform, delimiter=args.delimiter)

    if result.is_ok:
        console.print("[green]OK[/green]")
        return 0
    console.print(f"[red]{escape(result.message)}[/red]")
    return 1


def cmd_copy(args) -> int:
    config = CopyDataConfig(
        folder_path=args.paths,
        make_files_executable=args.executable,
        delete_files_after_build=args.delete_after,
        delimiter=args.delimiter,
    )
    host_config = _host_config(args)
    command = shlex.split(args.run) if args.run else []

    def build_step(workspace: str) -> int:
        console.print(f"[cyan]Copied into {workspace}[/cyan]")
        if not command:
            return 0
        return subprocess.run(command, cwd=workspace).returncode

    try:
        return run_build(config, host_config, args.workspace, build_step)
    except CopyDataError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        if e.manifest:
            console.print(f"[yellow]Already copied: {escape(', '.join(e.manifest))}[/yellow]")
        return 2


def cmd_agent(args) -> int:
    import uvicorn

    if args.host not in ("127.0.0.1", "localhost", "::1"):
        console.print(f"[yellow]Warning: agent bound to {args.host}; "
                      "put it behind https before exposing it[/yellow]")

    console.print(f"[cyan]Starting execution agent on {args.host}:{args.port}[/cyan]")
    uvicorn.run("copydata.channel.agent_api:app", host=args.host, port=args.port,
                log_level=args.log_level.lower())
    return 0


def cmd_agent_socket(args) -> int:
    from .channel.agent_socket import serve_unix

    executor = UnitExecutor(RoleAuthorizer(AgentConfig.from_env().allowed_roles))
    console.print(f"[cyan]Starting execution agent on unix://{args.path}[/cyan]")
    try:
        serve_unix(args.path, executor)
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="copydata",
                                     description="Copy allowed-root data into a build workspace")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        default="WARNING", help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command_name")

    # check command
    check_parser = subparsers.add_parser("check", help="Validate a folder path")
    check_parser.add_argument("paths", help="Fragment(s) relative to the allowed root")
    check_parser.add_argument("--root", help="Allowed root; enables existence and containment checks")
    check_parser.add_argument("--platform", choices=["posix", "windows"], help="Path grammar")
    check_parser.add_argument("--delimiter", default=",", help="Fragment separator")
    check_parser.set_defaults(func=cmd_check)

    # copy command
    copy_parser = subparsers.add_parser("copy", help="Copy fragments into a workspace")
    copy_parser.add_argument("paths", help="Fragment(s) relative to the allowed root")
    copy_parser.add_argument("--root", help="Allowed root (default: COPYDATA_ALLOWED_ROOT)")
    copy_parser.add_argument("--workspace", required=True, help="Destination directory")
    copy_parser.add_argument("--platform", choices=["posix", "windows"], help="Path grammar")
    copy_parser.add_argument("--delimiter", default=",", help="Fragment separator")
    copy_parser.add_argument("--executable", action="store_true", help="chmod 0755 copied files")
    copy_parser.add_argument("--delete-after", action="store_true",
                             help="Remove copied entries when the command finishes")
    copy_parser.add_argument("--run", help="Build command to run in the workspace")
    copy_parser.set_defaults(func=cmd_copy)

    # agent commands
    agent_parser = subparsers.add_parser("agent", help="Serve units over HTTP")
    agent_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    agent_parser.add_argument("--port", "-p", type=int, default=DEFAULT_AGENT_PORT,
                              help=f"Port to listen on (default: {DEFAULT_AGENT_PORT})")
    agent_parser.set_defaults(func=cmd_agent)

    socket_parser = subparsers.add_parser("agent-socket", help="Serve units over a unix socket")
    socket_parser.add_argument("--path", required=True, help="Socket path")
    socket_parser.set_defaults(func=cmd_agent_socket)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    logging.basicConfig(level=args.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        return 2
    finally:
        flush_events()


if __name__ == "__main__":
    sys.exit(main())
