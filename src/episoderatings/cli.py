import asyncio
import json
import logging
import os
import sys
from typing import Annotated, Optional

import typer
import yaml
from loguru import logger
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from episoderatings import __version__
from episoderatings.lib.config import (
    CONFIG_PATH,
    read_config, default_config, EpisodeRatingsConfig, ConfigurationError,
)
from episoderatings.lib.enrich import EnrichmentService, EnrichmentError
from episoderatings.lib.models import SeriesRecord

logging.getLogger('asyncio').setLevel(logging.WARNING)


app = typer.Typer()


def _get_config(path: str, console: Console) -> EpisodeRatingsConfig:
    try:
        return read_config(path)
    except ConfigurationError as e:
        console.print(f"[bold red]{e}")
        console.print("[white]Consider using 'setup' to install default configuration file")
        sys.exit(2)


def _configure_logging(config: EpisodeRatingsConfig, verbose: bool):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else config.logging.loglevel)
    if config.logging.logfile:
        logger.add(config.logging.logfile, level=config.logging.loglevel, rotation="10 MB")


def _mask(key: Optional[str]) -> str:
    if not key:
        return "[red]missing"
    return f"[green]{key[:3]}{'*' * 8}"


def _pretty_print_series(series: SeriesRecord, console: Console):
    console.rule(
        title=f"[blue] {series.name} ({series.id}) ★ {series.imdb_rating or '-'}",
        align="left", style="blue"
    )
    if series.description:
        console.print(Text(series.description, style="white"))

    table = Table(expand=True)
    table.add_column("Episode", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Released", no_wrap=True)
    table.add_column("IMDb", justify="right", style="green")
    for episode in series.episodes:
        table.add_row(
            f"S{episode.season:02d}E{episode.episode:02d}",
            episode.title,
            episode.released.date().isoformat() if episode.released else "",
            episode.imdb_rating or "N/A",
        )
    console.print(table)


@app.command()
def setup(
        configuration: Annotated[
            Optional[str],
            typer.Option(
                "--configuration", "-c",
                help="Use a non-default configuration file."
            )
        ] = None,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Show log messages.")
        ] = False,
):
    """Setup a default configuration file."""
    if not verbose:
        logger.disable("episoderatings")

    console = Console(quiet=False)
    new_config: EpisodeRatingsConfig = default_config.model_copy(deep=True)
    target = configuration or CONFIG_PATH

    logger.debug(f"Creating new config at {target}")
    if os.path.exists(target) and not Confirm.ask(f"File already exists {target}, overwrite?"):
        raise typer.Abort()

    for api in new_config.api:
        api.key = Prompt.ask(f"Enter {api.name.upper()} API key (empty = per-user configuration)", default="")

    config_obj = {
        "episoderatings": new_config.model_dump(mode="json")
    }

    with open(target, "w") as file:
        yaml.safe_dump(config_obj, file)

    console.print(Text(f"Configuration file copied to {target}", style="green bold"))


@app.command()
def info(
        configuration: Annotated[
            Optional[str],
            typer.Option(
                "--configuration", "-c",
                help="Use a non-default configuration file."
            )
        ] = None,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Show log messages.")
        ] = False,
):
    """Show configuration details."""
    if not verbose:
        logger.disable("episoderatings")

    console = Console(quiet=False)
    parsed_config = _get_config(configuration, console)

    console.rule(title=f"[blue] Configuration @ {configuration or CONFIG_PATH}", align="left", style="blue")
    for api in parsed_config.api:
        console.print(f"[white] {api.name}: {api.url or '(default url)'}, key: {_mask(api.key)}")
    console.print(f"[white] addressing: {parsed_config.addressing}")
    console.print(f"[white] error policy: {parsed_config.error_policy}")
    console.print(f"[white] per-user credentials: {parsed_config.per_caller_credentials}")
    console.print(
        f"[white] cache: enabled={parsed_config.cache.enabled}, "
        f"series={parsed_config.cache.series_ttl}s, episodes={parsed_config.cache.episode_ttl}s"
    )

    sys.exit(0)


@app.command()
def version(
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Show log messages.")
        ] = False,
):
    """Show version."""
    if not verbose:
        logger.disable("episoderatings")

    console = Console(quiet=False)
    console.print(Text(__version__), style="bold green")


async def _fetch(config: EpisodeRatingsConfig, content_type: str, external_id: str) -> Optional[SeriesRecord]:
    async with EnrichmentService(config) as service:
        return await service.handle_meta_request(content_type, external_id)


@app.command()
def meta(
        external_id: Annotated[
            str,
            typer.Argument(help="IMDb id of the series, e.g. tt3581920")
        ],
        content_type: Annotated[
            str,
            typer.Option("--type", "-t", help="Content type requested by the host.")
        ] = "series",
        as_json: Annotated[
            bool,
            typer.Option("--json", help="Print the raw host response.")
        ] = False,
        configuration: Annotated[
            Optional[str],
            typer.Option(
                "--configuration", "-c",
                help="Use a non-default configuration file."
            )
        ] = None,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Show log messages.")
        ] = False,
):
    """Fetch a single series with its episode ratings."""
    console = Console(quiet=False)
    parsed_config = _get_config(configuration, console)
    _configure_logging(parsed_config, verbose)
    if not verbose:
        logger.disable("episoderatings")

    s = console.status(Text(f"Fetching {external_id}", style="green bold"))
    if not verbose:
        s.start()
    try:
        series = asyncio.run(_fetch(parsed_config, content_type, external_id))
    except (ConfigurationError, EnrichmentError) as e:
        s.stop()
        console.print(f"[bold red]{e}")
        raise typer.Exit(1)
    s.stop()

    if as_json:
        console.print_json(json.dumps({"meta": series.to_host() if series else None}))
    elif series is None:
        console.print(Text(f"Nothing found for {content_type} '{external_id}'.", style="yellow bold"))
    else:
        _pretty_print_series(series, console)


@app.command()
def serve(
        host: Annotated[
            Optional[str],
            typer.Option("--host", help="Interface to bind, overrides the configuration.")
        ] = None,
        port: Annotated[
            Optional[int],
            typer.Option("--port", "-p", help="Port to listen on, overrides the configuration.")
        ] = None,
        configuration: Annotated[
            Optional[str],
            typer.Option(
                "--configuration", "-c",
                help="Use a non-default configuration file."
            )
        ] = None,
        verbose: Annotated[
            bool,
            typer.Option("--verbose", "-v", help="Show debug log messages.")
        ] = False,
):
    """Run the add-on HTTP server."""
    from episoderatings.server import run

    console = Console(quiet=False)
    parsed_config = _get_config(configuration, console)
    _configure_logging(parsed_config, verbose)

    run(parsed_config, host=host, port=port)


def main():
    app()


if __name__ == "__main__":
    main()
