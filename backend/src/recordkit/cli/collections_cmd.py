"""Collection CLI commands: list, validate, and rule checks."""

from pathlib import Path

import click

from recordkit.config import resolve_base_path
from recordkit.core.outcomes import InvalidRuleError
from recordkit.metadata.loader import CollectionError, CollectionLoader
from recordkit.rules.compiler import RuleCompiler

path_option = click.option(
    "--path",
    "metadata_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Metadata directory (defaults to <project>/metadata).",
)


def _load(metadata_path: Path | None) -> CollectionLoader:
    """Load collections, exiting with status 1 on schema errors."""
    metadata_path = metadata_path or resolve_base_path() / "metadata"
    if not metadata_path.exists():
        click.echo(f"Error: Metadata directory not found at {metadata_path}", err=True)
        raise SystemExit(1)

    loader = CollectionLoader(metadata_path)
    try:
        loader.load_all()
    except CollectionError as e:
        if e.issues:
            for issue in e.issues:
                click.echo(click.style(str(issue), fg="red"), err=True)
            click.echo(
                click.style(f"\n{len(e.issues)} schema error(s) found", fg="red", bold=True),
                err=True,
            )
        else:
            click.echo(click.style(f"Schema validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)
    return loader


def _describe_rule(rule: str | None) -> str:
    if rule is None:
        return "locked"
    if not rule.strip():
        return "open"
    return rule


@click.group()
def collections():
    """Collection commands."""
    pass


@collections.command("list")
@path_option
def list_cmd(metadata_path: Path | None):
    """List collections with their fields and rules."""
    loader = _load(metadata_path)
    for name in sorted(loader.list_collections()):
        collection = loader.get_collection(name)
        click.echo(f"{name} ({collection.type}, {len(collection.fields)} fields)")
        for action in ("list", "view", "create", "update", "delete"):
            click.echo(f"  {action}: {_describe_rule(collection.rules.get(action))}")


@collections.command()
@path_option
def validate(metadata_path: Path | None):
    """Load the schema and compile every collection rule."""
    loader = _load(metadata_path)
    compiler = RuleCompiler(loader)
    names = sorted(loader.list_collections())
    issues = compiler.check_all([loader.get_collection(n) for n in names])

    for issue in issues:
        click.echo(click.style(str(issue), fg="red"))

    if issues:
        click.echo(click.style(f"\n{len(issues)} invalid rule(s) found", fg="red", bold=True))
        raise SystemExit(1)

    click.echo(f"Loaded {len(names)} collections:")
    for name in names:
        collection = loader.get_collection(name)
        click.echo(f"  ✓ {name} ({len(collection.fields)} fields, type: {collection.type})")
    click.echo(click.style("\nAll collections are valid.", fg="green", bold=True))


@click.group()
def rules():
    """Rule commands."""
    pass


@rules.command("check")
@click.argument("collection")
@click.argument("expression")
@path_option
def check_cmd(collection: str, expression: str, metadata_path: Path | None):
    """Compile EXPRESSION against COLLECTION's schema."""
    loader = _load(metadata_path)
    try:
        compiled = RuleCompiler(loader).compile(collection, expression)
    except InvalidRuleError as e:
        click.echo(click.style(f"Invalid: {e.message}", fg="red"), err=True)
        raise SystemExit(1)
    click.echo(click.style("Valid.", fg="green"))
    click.echo(repr(compiled.ast))
