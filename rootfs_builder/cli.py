"""Command-line interface for rootfs_builder.

Commands read their settings from ROOTFS_BUILDER_* variables, call the
build and definition services, and print Rich text or JSON (``--json``).
Log records go to stderr so JSON output stays parseable.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler

from rootfs_builder import __version__
from rootfs_builder.config import Settings, get_settings, print_settings_json
from rootfs_builder.errors import RootfsBuilderError

app = typer.Typer(
    name="rootfs-builder",
    help="Rootfs Builder - build root filesystems for native and foreign architectures",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]
VerboseOption = Annotated[
    bool, typer.Option("--verbose", "-v", help="Log every command (DEBUG level)")
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rootfs-builder version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(error: RootfsBuilderError) -> NoReturn:
    console.print(f"[red]Error ({error.code}): {error.message}[/red]")
    raise typer.Exit(code=1)


def _session_factory(settings: Settings) -> Any:
    from rootfs_builder.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


def _list_definitions(base_dir: Path, kind: str, json_output: bool) -> None:
    from rootfs_builder.definitions.io import list_definition_names

    names = list_definition_names(base_dir, kind)
    if json_output:
        console.print_json(data=names)
        return
    if not names:
        console.print(f"[yellow]No {kind}s found in {base_dir}[/yellow]")
        return
    console.print(f"[bold]Found {len(names)} {kind}(s):[/bold]")
    for name in names:
        console.print(f"  {name}")


def _run_build(builder: Callable[..., Any], name: str, verbose: bool) -> Any:
    """Run a build entry point, committing its record even when it fails."""
    if verbose:
        configure_logging("DEBUG")

    settings = get_settings()
    factory = _session_factory(settings)
    with factory() as session:
        try:
            record = builder(session, name, settings)
        except RootfsBuilderError as e:
            session.commit()
            _fail(e)
        session.commit()
    return record


def _build_to_dict(build: Any) -> dict[str, Any]:
    return {
        "id": build.id,
        "target_name": build.target_name,
        "target_kind": build.target_kind,
        "arch": build.arch,
        "status": build.status,
        "job_id": build.job_id,
        "rootfs_path": build.rootfs_path,
        "requested_at": build.requested_at.isoformat() if build.requested_at else None,
        "started_at": build.started_at.isoformat() if build.started_at else None,
        "finished_at": build.finished_at.isoformat() if build.finished_at else None,
        "failed_stage": build.failed_stage,
        "error_type": build.error_type,
        "error_message": build.error_message,
    }


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Rootfs Builder - build root filesystems for any architecture."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Definitions:[/bold]")
    console.print(f"  Projects directory:  {settings.projects_dir}")
    console.print(f"  Platforms directory: {settings.platforms_dir}")
    console.print(f"  Recipes directory:   {settings.recipes_dir}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Build directory:     {settings.build_dir}")
    console.print(f"  Platform builds:     {settings.platform_build_dir}")
    console.print(f"  Jobs directory:      {settings.jobs_dir}")
    console.print(f"  Cache directory:     {settings.cache_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Host:[/bold]")
    console.print(f"  Architecture:        {settings.host_arch}")
    console.print(f"  Resolver config:     {settings.host_resolv_conf}")
    console.print(f"  Emulator directory:  {settings.emulator_dir}")
    console.print(f"  No-op binary:        {settings.noop_binary}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Max workers:         {settings.max_workers}")
    console.print(f"  Command timeout:     {settings.command_timeout}")


@app.command()
def build(
    project: Annotated[str, typer.Argument(help="Project to build")],
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """Build a project's rootfs and publish it.

    Parent platforms whose rootfs was never built are built first.
    """
    from rootfs_builder.builds.service import build_project

    record = _run_build(build_project, project, verbose)
    if json_output:
        console.print_json(data=_build_to_dict(record))
        return
    console.print(f"[green]Built {project}[/green] (build #{record.id})")
    console.print(f"  Architecture: {record.arch}")
    console.print(f"  Rootfs: {record.rootfs_path}")


builds_app = typer.Typer(help="Inspect build records")
app.add_typer(builds_app, name="builds")


@builds_app.command("list")
def builds_list(
    target_name: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Filter by project or platform name"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status", "-s", help="Filter by status (pending/running/succeeded/failed)"
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: JsonOption = False,
) -> None:
    """List build records, newest first."""
    from rootfs_builder.builds.service import list_builds
    from rootfs_builder.types import BuildStatus

    status_filter: BuildStatus | None = None
    if status:
        try:
            status_filter = BuildStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: pending, running, succeeded, failed")
            raise typer.Exit(code=1) from None

    from rootfs_builder.db import session_scope

    with session_scope(_session_factory(get_settings())) as session:
        builds = list_builds(
            session, target_name=target_name, status=status_filter, limit=limit
        )

        if not builds:
            if json_output:
                console.print_json(data=[])
            else:
                console.print("[yellow]No build records found[/yellow]")
            return

        if json_output:
            console.print_json(data=[_build_to_dict(b) for b in builds])
            return

        console.print(f"[bold]Found {len(builds)} build(s):[/bold]")
        console.print()
        for b in builds:
            status_color = {
                "succeeded": "green",
                "failed": "red",
                "running": "blue",
                "pending": "yellow",
            }.get(b.status, "white")
            requested = b.requested_at.isoformat() if b.requested_at else "N/A"
            console.print(f"  [{status_color}]Build #{b.id}[/{status_color}]")
            console.print(f"    Target: {b.target_kind} {b.target_name}")
            console.print(f"    Arch: {b.arch or 'N/A'}")
            console.print(f"    Status: {b.status}")
            console.print(f"    Requested: {requested}")
            if b.rootfs_path:
                console.print(f"    Rootfs: {b.rootfs_path}")
            if b.error_message:
                stage = f" at {b.failed_stage}" if b.failed_stage else ""
                console.print(f"    Error{stage}: {b.error_message}")
            console.print()


@builds_app.command("show")
def builds_show(
    build_id: Annotated[int, typer.Argument(help="Build record ID")],
    json_output: JsonOption = False,
) -> None:
    """Show one build record."""
    from rootfs_builder.builds.service import get_build
    from rootfs_builder.db import session_scope

    with session_scope(_session_factory(get_settings())) as session:
        try:
            b = get_build(session, build_id)
        except RootfsBuilderError as e:
            _fail(e)

        if json_output:
            console.print_json(data=_build_to_dict(b))
            return

        console.print(f"[bold]Build #{b.id}[/bold]")
        console.print(f"  Target: {b.target_kind} {b.target_name}")
        console.print(f"  Arch: {b.arch or 'N/A'}")
        console.print(f"  Status: {b.status}")
        console.print(f"  Job: {b.job_id or 'N/A'}")
        if b.log_path:
            console.print(f"  Log: {b.log_path}")
        if b.duration is not None:
            console.print(f"  Duration: {b.duration.total_seconds():.1f}s")
        if b.rootfs_path:
            console.print(f"  Rootfs: {b.rootfs_path}")
        if b.error_message:
            stage = f" at {b.failed_stage}" if b.failed_stage else ""
            console.print(f"  Error ({b.error_type}){stage}:")
            console.print(f"    {b.error_message}")


recipes_app = typer.Typer(help="Inspect recipes and their package caches")
app.add_typer(recipes_app, name="recipes")


@recipes_app.command("list")
def recipes_list(
    json_output: JsonOption = False,
) -> None:
    """List recipe definitions."""
    _list_definitions(get_settings().recipes_dir, "recipe", json_output)


@recipes_app.command("show")
def recipes_show(
    name: Annotated[str, typer.Argument(help="Recipe name")],
    json_output: JsonOption = False,
) -> None:
    """Show a recipe's packages and which of them are cached."""
    from rootfs_builder.db import session_scope
    from rootfs_builder.recipes.cache import RecipeCache

    settings = get_settings()

    with session_scope(_session_factory(settings)) as session:
        try:
            recipe = RecipeCache.init(session, name, settings)
        except RootfsBuilderError as e:
            _fail(e)

        caches = recipe.package_caches
        if json_output:
            console.print_json(
                data={
                    "name": recipe.name,
                    "description": recipe.definition.description,
                    "packages": recipe.packages,
                    "cached": {p: str(path) for p, path in caches.items()},
                }
            )
            return

        console.print(f"[bold]{recipe.name}[/bold]")
        if recipe.definition.description:
            console.print(f"  {recipe.definition.description}")
        console.print(f"  Store: {recipe.store_dir}")
        console.print()
        for package, version in recipe.packages.items():
            if package in caches:
                cached_path = caches[package]
                console.print(f"  [green]{package}[/green] {version} ({cached_path})")
            else:
                console.print(f"  {package} {version} (not cached)")


platforms_app = typer.Typer(help="Inspect and build platforms")
app.add_typer(platforms_app, name="platforms")


@platforms_app.command("list")
def platforms_list(
    json_output: JsonOption = False,
) -> None:
    """List platform definitions."""
    _list_definitions(get_settings().platforms_dir, "platform", json_output)


@platforms_app.command("show")
def platforms_show(
    name: Annotated[str, typer.Argument(help="Platform name")],
    json_output: JsonOption = False,
) -> None:
    """Show a platform, its architecture and its parent chain."""
    from rootfs_builder.builds.arch import ArchitectureRef, is_foreign

    settings = get_settings()
    try:
        ref = ArchitectureRef.resolve(name, settings)
    except RootfsBuilderError as e:
        _fail(e)

    refs = [ref]
    while refs[-1].parent is not None:
        refs.append(refs[-1].parent)
    chain = [r.name for r in refs]
    base = refs[-1].base_rootfs
    foreign = is_foreign(ref.arch, settings.host_arch)

    if json_output:
        console.print_json(
            data={
                "name": ref.name,
                "arch": ref.arch,
                "foreign": foreign,
                "chain": chain,
                "base_rootfs": str(base) if base else None,
            }
        )
        return

    console.print(f"[bold]{ref.name}[/bold]")
    console.print(f"  Architecture: {ref.arch}" + (" (emulated)" if foreign else ""))
    console.print(f"  Chain: {' -> '.join(chain)}")
    console.print(f"  Base rootfs: {base}")


@platforms_app.command("build")
def platforms_build(
    name: Annotated[str, typer.Argument(help="Derived platform to build")],
    verbose: VerboseOption = False,
) -> None:
    """Build a derived platform's rootfs and publish it."""
    from rootfs_builder.builds.service import build_platform

    record = _run_build(build_platform, name, verbose)
    console.print(f"[green]Built platform {name}[/green] (build #{record.id})")
    console.print(f"  Rootfs: {record.rootfs_path}")


if __name__ == "__main__":
    app()
