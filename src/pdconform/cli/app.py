"""Tyro CLI application entrypoint."""

from __future__ import annotations

from typing import Annotated

import tyro

from pdconform.cli import commands_decoders, commands_run


TopLevelCommand = Annotated[
    commands_run.RunCommand,
    tyro.conf.subcommand(name="run"),
] | Annotated[
    commands_decoders.DecodersCommand,
    tyro.conf.subcommand(name="decoders"),
]


def dispatch(command: TopLevelCommand) -> int:
    """Dispatch parsed top-level command object; returns the exit status."""

    if isinstance(command, commands_run.RunCommand):
        return commands_run.execute(command)
    if isinstance(command, commands_decoders.DecodersCommand):
        return commands_decoders.execute(command)
    raise TypeError(f"Unsupported command type: {type(command).__name__}")


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and run requested command."""

    command = tyro.cli(TopLevelCommand, args=argv)
    status = dispatch(command)
    if status:
        raise SystemExit(status)
