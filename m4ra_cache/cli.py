"""Typer CLI for caching weighted networks and vertex indices."""
import logging
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv

from . import batch, weighting
from .cache import CacheContext, load_settings
from .errors import M4raCacheError
from .network import load_street_network
from .profile import build_motorcar_profile, dump_profile
from .vertex_index import build_vertex_indices

# M4RA_CACHE_DIR may come from a local .env file
load_dotenv()

app = typer.Typer(add_completion=False)

ConfigOption = typer.Option(None, "--config", help="YAML file with cache settings.")
CacheDirOption = typer.Option(None, "--cache-dir", help="Cache root; overrides config and M4RA_CACHE_DIR.")
LogLevelOption = typer.Option("WARNING", "--log-level", help="Logging level.")


def _context(config: Optional[Path], cache_dir: Optional[Path], log_level: str) -> CacheContext:
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    settings = load_settings(config)
    if cache_dir is not None:
        settings = settings.model_copy(update={"cache_dir": cache_dir})
    return CacheContext.from_settings(settings)


def _emit(paths: List[Path]) -> None:
    for p in paths:
        typer.echo(str(p))


def _fail(err: M4raCacheError) -> None:
    typer.secho(f"Error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def weight(
    network: Path = typer.Argument(..., exists=True, dir_okay=False, help="Pickled raw street network."),
    city: str = typer.Option(..., help="City name used for the cache directory and file names."),
    quiet: bool = typer.Option(False, "--quiet/--verbose", help="Suppress progress output."),
    config: Optional[Path] = ConfigOption,
    cache_dir: Optional[Path] = CacheDirOption,
    log_level: str = LogLevelOption,
):
    """Weight one network for all modes and cache it with its vertex indices."""
    ctx = _context(config, cache_dir, log_level)
    try:
        net = load_street_network(network)
        _emit(weighting.weight_networks(net, city, quiet=quiet, context=ctx))
    except M4raCacheError as err:
        _fail(err)


@app.command("batch")
def batch_cmd(
    net_dir: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory of pickled networks."),
    exclude: List[str] = typer.Option([], "--exclude", help="Network names to skip (repeatable)."),
    config: Optional[Path] = ConfigOption,
    cache_dir: Optional[Path] = CacheDirOption,
    log_level: str = LogLevelOption,
):
    """Weight every city network in a directory, stopping at the first failure."""
    ctx = _context(config, cache_dir, log_level)
    try:
        _emit(batch.batch_weight_networks(net_dir, excluded=exclude, context=ctx))
    except M4raCacheError as err:
        _fail(err)


@app.command("vertex-indices")
def vertex_indices(
    city: str,
    config: Optional[Path] = ConfigOption,
    cache_dir: Optional[Path] = CacheDirOption,
    log_level: str = LogLevelOption,
):
    """Build (or reuse) the pairwise vertex indices of an already weighted city."""
    ctx = _context(config, cache_dir, log_level)
    try:
        _emit(build_vertex_indices(city, context=ctx))
    except M4raCacheError as err:
        _fail(err)


@app.command()
def profile(
    traffic_lights: float = typer.Option(16, min=0, help="Motorcar traffic-light penalty (s)."),
    turn: float = typer.Option(1, min=0, help="Motorcar turn penalty (s)."),
    out: Optional[Path] = typer.Option(None, help="Write to this file instead of stdout."),
):
    """Print the default weighting profile with the motorcar penalties overridden."""
    try:
        payload = dump_profile(build_motorcar_profile(traffic_lights, turn))
    except M4raCacheError as err:
        _fail(err)
    if out is None:
        typer.echo(payload.decode("utf-8"))
    else:
        out.write_bytes(payload)
        typer.echo(f"Profile written: {out}")


@app.command("cache-dir")
def cache_dir_cmd(
    config: Optional[Path] = ConfigOption,
    cache_dir: Optional[Path] = CacheDirOption,
):
    """Show the resolved cache root."""
    typer.echo(str(_context(config, cache_dir, "WARNING").root))


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
