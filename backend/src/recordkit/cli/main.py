"""recordkit CLI entry point."""

import click


@click.group()
def cli():
    """recordkit: collection records with rules and hooks."""
    pass


# Register subcommand groups
from recordkit.cli.collections_cmd import collections, rules  # noqa: E402
from recordkit.cli.serve_cmd import serve  # noqa: E402

cli.add_command(collections)
cli.add_command(rules)
cli.add_command(serve)
