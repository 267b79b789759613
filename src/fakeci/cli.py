import asyncio
import signal
from pathlib import Path
from typing import Optional

import click

from . import settings
from .core.config import cache_dir
from .core.core import FakeCICore
from .core.services.builders.pipeline import load_watch_config, render_result
from .core.services.cache import RefCache
from .core.services.git_module import GitLocalPathError
from .core.services.notifiers import NOTIFIERS, NotifierDispatcher
from .core.services.poller import RepositoryPoller
from .core.services.watcher import Watcher
from .exception import CacheIOError, ConfigError
from .utils import async_click, setup_logging


class ConfigException(click.ClickException):
    """Невалидный конфиг: процесс не стартует, код выхода 2."""

    exit_code = 2


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Подробный лог: команды docker и вывод шагов")
@click.version_option(settings.VERSION, prog_name="fake-ci")
def main(verbose: bool):
    """A CI system: watches git repositories and runs their .fakeci.yml in docker."""
    setup_logging(verbose)


@main.command()
@click.option("-c", "--config", default=settings.DEFAULT_CONFIG_FILE, show_default=True, help="Конфиг наблюдателя (YAML)")
@click.option("--once", is_flag=True, help="Выполнить один проход опроса и выйти")
@click.option("--cache-dir", "cache_path", default=None, help="Каталог кэша веток")
@click.option("--step-timeout", type=float, default=None, help="Лимит на одну команду шага, секунды")
@async_click
async def watch(config: str, once: bool, cache_path: Optional[str], step_timeout: Optional[float]):
    """Runs fake-ci in polling mode over the configured repositories."""
    click.echo(settings.LOGO, err=True)

    try:
        watch_config = load_watch_config(Path(config), known_notifiers=NOTIFIERS.keys())
    except ConfigError as e:
        raise ConfigException(str(e))

    cache = RefCache(Path(cache_path) if cache_path else cache_dir())
    core = FakeCICore(step_timeout=step_timeout)
    watcher = Watcher(
        watch_config,
        cache,
        RepositoryPoller(cache, core.git),
        core.launch,
        NotifierDispatcher(),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, watcher.stop)
        except NotImplementedError:
            # Windows: остаётся KeyboardInterrupt
            pass

    try:
        if once:
            results = await watcher.tick()
            click.echo(f"Выполнено прогонов: {len(results)}", err=True)
        else:
            await watcher.start()
    except CacheIOError as e:
        raise click.ClickException(str(e))


@main.command()
@click.argument("path", default=".", type=click.Path(file_okay=False))
@click.option("-f", "--file", "pipeline_file", default=settings.PIPELINE_FILE, show_default=True, help="Файл пайплайна относительно PATH")
@click.option("--output", "show_output", is_flag=True, help="Показать вывод шагов в отчёте")
@click.option("--json", "as_json", is_flag=True, help="Напечатать PipelineResult в JSON")
@click.option("--step-timeout", type=float, default=None, help="Лимит на одну команду шага, секунды")
@async_click
async def run(path: str, pipeline_file: str, show_output: bool, as_json: bool, step_timeout: Optional[float]):
    """Runs the pipeline of a local working directory once."""
    core = FakeCICore(step_timeout=step_timeout)
    try:
        result = await core.run_local(Path(path), pipeline_file)
    except ConfigError as e:
        raise ConfigException(str(e))
    except GitLocalPathError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        click.echo(render_result(result, with_output=show_output))

    if not result.success:
        raise click.exceptions.Exit(1)


if __name__ == "__main__":
    main()
