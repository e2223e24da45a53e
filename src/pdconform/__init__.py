"""pdconform package entrypoint."""

from pdconform.cli.app import main as _cli_main


def main() -> None:
    """Run the pdconform CLI."""
    _cli_main()
