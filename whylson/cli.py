"""
CLI interface for whylson.

Provides commands to register ligo contracts, compile them to Michelson and
render the compiled contracts.

Contracts are tracked per project in .whylson/contracts.json; compiled
artifacts live in .whylson/bin-contracts/<stem>.tz.
"""


import asyncio
import json
import sys
from pathlib import Path

import click

from whylson import __version__


def _require_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'whylson init --force' to rewrite the configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _run_in_context(ctx, action, entrypoint: str | None = None, poll_interval: float = 0.5) -> bool:
    """
    Activate a WhylsonContext on a headless host and run action(host, context).

    Returns:
        What action returned, False if activation failed
    """
    from whylson.context import WhylsonContext
    from whylson.headless import HeadlessHost

    config = _require_config(ctx)

    async def runner() -> bool:
        host = HeadlessHost(
            ctx.obj["root"],
            entrypoint=entrypoint,
            interactive=sys.stdin.isatty(),
            poll_interval=poll_interval,
        )
        context = WhylsonContext(host, config)
        if not await context.activate():
            return False
        try:
            return await action(host, context)
        finally:
            await context.wait_idle()
            context.deactivate()

    return asyncio.run(runner())


def _source_argument(source: str) -> Path:
    path = Path(source).resolve()
    if not path.is_file():
        raise click.BadParameter(f"{source} does not exist", param_hint="SOURCE")
    return path


@click.group()
@click.version_option(version=__version__, prog_name="whylson")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project folder holding .whylson",
)
@click.pass_context
def main(ctx, root: Path):
    """
    whylson - ligo to Michelson companion.

    Register ligo contracts, compile them and inspect the Michelson output.
    """
    from whylson.config import ConfigError, load_config
    from whylson.utils import setup_logging

    ctx.ensure_object(dict)
    ctx.obj["root"] = root.resolve()
    try:
        config = load_config()
    except ConfigError as e:
        # init still works with a broken config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)
        return

    ctx.obj["config"] = config
    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.log_level,
        log_format=config.log_format,
        console_output=config.show_output_messages,
    )


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize whylson configuration."""
    from whylson.config import WhylsonConfig, get_whylson_home
    import yaml

    home = get_whylson_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = WhylsonConfig().to_dict()
    default_cfg["env_file"] = str(home / ".env")
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# PATH=/opt/ligo/bin:$PATH\n")

    click.echo(f"Initialized whylson config at {cfg_path}")


@main.command("activate")
@click.pass_context
def activate(ctx):
    """Create .whylson in the project and check for the ligo executable."""

    async def action(host, context) -> bool:
        return True

    if not _run_in_context(ctx, action):
        raise SystemExit(1)
    click.echo(f"✓ whylson active in {ctx.obj['root']}")


@main.command("list")
@click.pass_context
def list_contracts(ctx):
    """List registered contracts."""
    from rich.table import Table

    from whylson.errors import RegistryCorrupt
    from whylson.paths import WhylsonPaths
    from whylson.registry import ContractRegistry
    from whylson.utils import console

    registry = ContractRegistry(WhylsonPaths(ctx.obj["root"]).contracts_json)
    try:
        entries = asyncio.run(registry.load())
    except RegistryCorrupt as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if not entries:
        click.echo("No registered contracts.")
        return

    table = Table("Title", "Entrypoint", "Source", "Michelson")
    for entry in entries:
        table.add_row(entry.title, entry.entrypoint, entry.source, entry.on_path)
    console.print(table)


@main.command("show")
@click.argument("source")
@click.pass_context
def show(ctx, source: str):
    """Show the contract entry of SOURCE."""
    from whylson.errors import RegistryCorrupt
    from whylson.paths import WhylsonPaths
    from whylson.registry import ContractRegistry

    registry = ContractRegistry(WhylsonPaths(ctx.obj["root"]).contracts_json)
    try:
        asyncio.run(registry.load())
    except RegistryCorrupt as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    entry = registry.find(Path(source).resolve())
    if entry is None:
        click.echo(f"✗ No contract entry for {source}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(entry.to_dict(), indent=2))


@main.command("open-view")
@click.argument("source")
@click.option("--entrypoint", help="Entrypoint used if SOURCE is not registered yet")
@click.pass_context
def open_view(ctx, source: str, entrypoint: str | None):
    """
    Compile SOURCE (registering it first if needed) and print its Michelson.

    Examples:

        whylson open-view src/counter.mligo --entrypoint main
    """
    path = _source_argument(source)

    async def action(host, context) -> bool:
        return await context.open_michelson_view(await host.open_source(path))

    if not _run_in_context(ctx, action, entrypoint=entrypoint):
        raise SystemExit(1)


@main.command("save")
@click.argument("source")
@click.option("--entrypoint", help="Entrypoint used if SOURCE is not registered yet")
@click.pass_context
def save(ctx, source: str, entrypoint: str | None):
    """Compile SOURCE to its .tz artifact."""
    path = _source_argument(source)

    async def action(host, context) -> bool:
        return await context.save_contract(await host.open_source(path))

    if not _run_in_context(ctx, action, entrypoint=entrypoint):
        raise SystemExit(1)


@main.command("erase")
@click.argument("source")
@click.pass_context
def erase(ctx, source: str):
    """Remove the contract entry of SOURCE and delete its artifact."""
    path = _source_argument(source)

    async def action(host, context) -> bool:
        return await context.erase_contract_data(await host.open_source(path))

    if not _run_in_context(ctx, action):
        raise SystemExit(1)


@main.command("reset")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx, yes: bool):
    """Wipe and recreate the .whylson folder."""
    if not yes:
        click.confirm("Erase every contract entry and compiled artifact?", abort=True)

    async def action(host, context) -> bool:
        return await context.remake_dot_whylson()

    if not _run_in_context(ctx, action):
        raise SystemExit(1)
    click.echo(f"✓ Recreated {ctx.obj['root'] / '.whylson'}")


@main.command("start-session")
@click.pass_context
def start_session(ctx):
    """Start a Whylson verification session."""

    async def action(host, context) -> bool:
        return await context.start_session()

    if not _run_in_context(ctx, action):
        raise SystemExit(1)


@main.command("watch")
@click.argument("sources", nargs=-1, required=True)
@click.option("--entrypoint", help="Entrypoint used for sources not registered yet")
@click.option("--interval", default=0.5, show_default=True, help="Polling interval in seconds")
@click.pass_context
def watch(ctx, sources: tuple[str, ...], entrypoint: str | None, interval: float):
    """
    Recompile and print SOURCES whenever they change on disk.

    Stop with Ctrl-C.
    """
    paths = [_source_argument(source) for source in sources]

    async def action(host, context) -> bool:
        for path in paths:
            if not await context.open_michelson_view(await host.open_source(path)):
                return False
        click.echo(f"Watching {len(paths)} contract(s), press Ctrl-C to stop")
        await host.watch_sources(paths)
        return True

    try:
        ok = _run_in_context(ctx, action, entrypoint=entrypoint, poll_interval=interval)
    except KeyboardInterrupt:
        click.echo("Stopped watching")
        return
    if not ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
