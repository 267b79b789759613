import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from ....models.schemas import WatchedRepository, WatcherConfig
from ...models import PipelineResult, RevisionRef
from ..cache import RefCache
from ..git_module import GitExceptions
from ..notifiers import NotifierDispatcher
from ..poller import RepositoryPoller


logger = logging.getLogger(__name__)

Launcher = Callable[[WatchedRepository, RevisionRef], Awaitable[PipelineResult]]


class WatcherState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class Watcher:
    """
    Планировщик режима `watch`.

    Тик: опросить репозитории по порядку конфига, для каждой изменившейся
    ветки по очереди запустить пайплайн и только после получения
    PipelineResult записать коммит в кэш. Упавший посреди прогона процесс
    перезапустит ту же ревизию на следующем тике, а не потеряет её.

    Между тиками ждём watch_interval секунд с момента конца тика.
    Кэш пишет только наблюдатель, прогоны идут строго последовательно.
    """

    def __init__(
        self,
        config: WatcherConfig,
        cache: RefCache,
        poller: RepositoryPoller,
        launcher: Launcher,
        dispatcher: Optional[NotifierDispatcher] = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.poller = poller
        self.launcher = launcher
        self.dispatcher = dispatcher or NotifierDispatcher()
        self.state = WatcherState.IDLE
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def tick(self) -> List[PipelineResult]:
        """
        Один проход опроса. Возвращает результаты принятых прогонов.

        :raises CacheIOError: кэш не удалось записать.
        """
        self.state = WatcherState.POLLING
        results: List[PipelineResult] = []
        try:
            for repo in self.config.repositories:
                if self.stopping:
                    break
                results.extend(await self._process(repo))
        finally:
            self.state = WatcherState.IDLE
        return results

    async def _process(self, repo: WatchedRepository) -> List[PipelineResult]:
        logger.debug("Проверяем репозиторий %s", repo.name)
        try:
            refs = await self.poller.poll(repo)
        except GitExceptions as e:
            logger.error("Репозиторий %s пропущен в этом тике: %s", repo.name, e)
            return []

        if not refs:
            logger.debug("%s: изменений нет", repo.name)
            return []
        logger.info("%s: изменились ветки %s", repo.name, ", ".join(ref.branch for ref in refs))

        results: List[PipelineResult] = []
        for ref in refs:
            if self.stopping:
                # оставшиеся ревизии не в кэше и будут подобраны при следующем запуске
                break
            try:
                result = await self.launcher(repo, ref)
            except GitExceptions as e:
                logger.error("%s#%s: прогон не состоялся, повторим на следующем тике: %s", repo.name, ref.branch, e)
                continue
            except Exception:
                # кэш не тронут: ревизия повторится на следующем тике
                logger.exception("%s#%s: прогон упал с непредвиденной ошибкой", repo.name, ref.branch)
                continue
            self.cache.set(repo.name, ref.branch, ref.commit)
            self.dispatcher.dispatch(repo.notifiers, result)
            results.append(result)
        return results

    async def start(self) -> None:
        """
        Крутит тики до вызова stop(). Ожидание между тиками прерываемо.
        """
        logger.info(
            "Наблюдаем за %d репозиториями, интервал %d с",
            len(self.config.repositories),
            self.config.watch_interval,
        )
        while not self.stopping:
            await self.tick()
            if self.stopping:
                break
            logger.debug("Ждём %d с до следующего опроса", self.config.watch_interval)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.watch_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Наблюдатель остановлен")

    def stop(self) -> None:
        self._stop_event.set()
