"""CLI entry point for sdkrepo."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from sdkrepo import __version__
from sdkrepo.config import Settings
from sdkrepo.sources.catalog import SourceCatalog
from sdkrepo.sources.constants import SourceKind
from sdkrepo.sources.errors import CatalogError
from sdkrepo.sources.monitor import ConsoleMonitor, RecordingMonitor
from sdkrepo.sources.packages import Package
from sdkrepo.sources.schema import SchemaValidator, detect_version
from sdkrepo.sources.source import LoadOutcome, SdkSource, SourceLoader, UpgradeHint

console = Console()


def _kind(addon: bool) -> SourceKind:
    return SourceKind.ADDON if addon else SourceKind.REPOSITORY


def _compatible_archives(package: Package, os_name: str) -> int:
    return sum(1 for archive in package.archives if archive.is_compatible(os_name))


def _print_outcome(outcome: LoadOutcome, os_name: str | None = None) -> None:
    """Render a load outcome as a rich table plus status lines.

    With os_name, the Archives column counts only archives installable on
    that OS.
    """
    if outcome.success:
        console.print(f"[green]✓ {escape(outcome.url)}[/green]")
    else:
        console.print(f"[red]✗ {escape(outcome.url)}[/red]")

    console.print(f"[dim]{escape(outcome.description)}[/dim]")

    if outcome.packages:
        table = Table(title="Packages")
        table.add_column("Kind", style="cyan")
        table.add_column("Package")
        table.add_column("Revision", justify="right")
        table.add_column("Archives", justify="right")
        table.add_column("Obsolete")
        for package in outcome.packages:
            archives = str(len(package.archives))
            if os_name:
                archives = f"{_compatible_archives(package, os_name)}/{archives}"
            table.add_row(
                package.kind.value,
                escape(package.short_description()),
                str(package.revision),
                archives,
                "yes" if package.obsolete else "",
            )
        console.print(table)

    if outcome.error:
        style = "yellow" if outcome.success else "red"
        console.print(f"[{style}]{escape(outcome.error)}[/{style}]")


def _load_catalog(settings: Settings) -> SourceCatalog:
    try:
        return SourceCatalog.load(settings.sources_path)
    except CatalogError as e:
        console.print(f"[red]Invalid sources file {settings.sources_path}:[/red] {escape(str(e))}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """sdkrepo - Resolve SDK repository and add-on sources."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    try:
        ctx.obj = Settings.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)
    ctx.obj.verbose = verbose


@cli.command()
@click.argument("url")
@click.option("--addon", is_flag=True, help="Treat URL as a user add-on site")
@click.option("--force-http", is_flag=True, help="Fetch https:// URLs over http://")
@click.option("--ide-plugin", is_flag=True, help="Word upgrade hints for the IDE plugin")
@click.option(
    "--os",
    "os_name",
    type=click.Choice(["linux", "macosx", "windows"]),
    default=None,
    help="Count only archives installable on this OS",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def load(
    settings: Settings,
    url: str,
    addon: bool,
    force_http: bool,
    ide_plugin: bool,
    os_name: str | None,
    as_json: bool,
):
    """Fetch, validate and parse a repository source.

    Example: sdkrepo load https://dl-ssl.google.com/android/repository/
    """
    source = SdkSource(url, kind=_kind(addon))
    loader = SourceLoader(settings=settings)
    monitor = RecordingMonitor() if as_json else ConsoleMonitor(console, settings.verbose)
    hint = UpgradeHint.IDE_PLUGIN if ide_plugin else UpgradeHint.TOOLS

    outcome = source.load(monitor, force_http=force_http or None, loader=loader, upgrade_hint=hint)

    if as_json:
        result = outcome.to_dict()
        if os_name and outcome.packages:
            for package, entry in zip(outcome.packages, result["packages"]):
                entry["compatible_archives"] = _compatible_archives(package, os_name)
        result["monitor"] = {"descriptions": monitor.descriptions, "results": monitor.results}
        click.echo(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        _print_outcome(outcome, os_name)

    if not outcome.success:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--addon", is_flag=True, help="Detect against the add-on schema")
def detect(file: Path, addon: bool):
    """Print the schema version a local document declares."""
    kind = _kind(addon)
    version = detect_version(file.read_bytes(), kind)
    if version == 0:
        console.print(f"[red]No {kind.schema.root_element} schema version found in {escape(str(file))}[/red]")
        sys.exit(1)

    supported = "supported" if kind.schema.supports(version) else "newer than supported"
    console.print(f"Schema version {version} ({supported})")
    console.print(f"[dim]{kind.schema.schema_uri(version)}[/dim]")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--addon", is_flag=True, help="Validate against the add-on schema")
def validate(file: Path, addon: bool):
    """Validate a local document against its declared schema version."""
    kind = _kind(addon)
    data = file.read_bytes()
    version = detect_version(data, kind)
    if not kind.schema.supports(version):
        console.print(
            f"[red]Unsupported or missing schema version ({version}) in {escape(str(file))}[/red]"
        )
        sys.exit(1)

    result = SchemaValidator().validate(data, kind, version, str(file))
    if not result.ok:
        console.print(f"[red]{escape(result.error or 'Validation failed')}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Valid[/green] {result.schema_uri}")


@cli.group()
def sources():
    """Manage add-on sources in the user sources file."""
    pass


@sources.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def sources_list(settings: Settings, as_json: bool):
    """List built-in and user sources."""
    catalog = _load_catalog(settings)

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in catalog.sources], indent=2, ensure_ascii=False))
        return

    table = Table(title="Sources")
    table.add_column("URL", style="cyan")
    table.add_column("Name")
    table.add_column("Kind", style="yellow")
    for source in catalog.sources:
        table.add_row(escape(source.url), escape(source.ui_name or ""), source.kind.value)
    console.print(table)
    console.print(f"\n[dim]Sources file: {escape(str(settings.sources_path))}[/dim]")


@sources.command("add")
@click.argument("url")
@click.option("--name", default=None, help="Display name for the source")
@click.option("--repository", is_flag=True, help="Register as a trusted repository source")
@click.pass_obj
def sources_add(settings: Settings, url: str, name: str | None, repository: bool):
    """Register an add-on site."""
    catalog = _load_catalog(settings)
    kind = SourceKind.REPOSITORY if repository else SourceKind.ADDON
    source = SdkSource(url, ui_name=name, kind=kind)

    if not catalog.add(source):
        console.print(f"[yellow]Source already registered: {escape(source.url)}[/yellow]")
        return

    catalog.save(settings.sources_path)
    console.print(f"[green]✓ Added {escape(source.url)}[/green]")


@sources.command("remove")
@click.argument("url")
@click.pass_obj
def sources_remove(settings: Settings, url: str):
    """Unregister a user source."""
    catalog = _load_catalog(settings)
    if not catalog.remove(url):
        console.print(f"[red]No user source with URL {escape(url)}[/red]")
        sys.exit(1)

    catalog.save(settings.sources_path)
    console.print(f"[green]✓ Removed {escape(url)}[/green]")


@sources.command("refresh")
@click.option("--force-http", is_flag=True, help="Fetch https:// URLs over http://")
@click.pass_obj
def sources_refresh(settings: Settings, force_http: bool):
    """Load every source and summarize the results."""
    catalog = _load_catalog(settings)
    outcomes = catalog.load_all(force_http=force_http or None, settings=settings)

    table = Table(title="Source Refresh")
    table.add_column("Source", style="cyan")
    table.add_column("Packages", justify="right")
    table.add_column("Status")
    failures = 0
    for source, outcome in outcomes:
        if outcome.success:
            status = "[green]✓ OK[/green]"
            if outcome.upgrade_required:
                status = "[yellow]⚠ Upgrade required[/yellow]"
        else:
            failures += 1
            status = f"[red]✗ {escape(outcome.error or outcome.state.value)}[/red]"
        count = str(len(outcome.packages)) if outcome.packages is not None else "-"
        table.add_row(escape(source.short_description()), count, status)
    console.print(table)

    if failures:
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
