import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence

from ....exception import ConfigError, NotifierError
from ....models.schemas import NotifierSpec
from ...models import PipelineResult
from ..builders.pipeline import render_result


logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """
    Получатель итогов прогона. Обязательство одно: отобразить результат.
    """

    def send(self, result: PipelineResult) -> None:
        ...


class LogNotifier:
    """
    Пишет отчёт о прогоне в лог (`type: log`, config: `{output: true}`
    добавляет захваченный вывод шагов).
    """

    def __init__(self, with_output: bool = False) -> None:
        self.with_output = with_output

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "LogNotifier":
        return cls(with_output=bool(config.get("output", False)))

    def send(self, result: PipelineResult) -> None:
        level = logging.INFO if result.success else logging.WARNING
        logger.log(level, "%s", render_result(result, with_output=self.with_output))


class FileNotifier:
    """
    Складывает результат прогона в JSON (`type: file`, config: `{path: ...}`),
    по файлу на прогон.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "FileNotifier":
        path = config.get("path")
        if not path:
            raise ConfigError("notifier `file` requires `config.path`")
        return cls(Path(str(path)).expanduser())

    def file_name(self, result: PipelineResult) -> str:
        parts = [result.name]
        if result.revision is not None:
            parts.append(result.revision.branch)
            parts.append(result.revision.commit[:10])
        parts.append(result.started_at.strftime("%Y%m%dT%H%M%S"))
        return re.sub(r"[^A-Za-z0-9._-]+", "_", "-".join(parts)) + ".json"

    def send(self, result: PipelineResult) -> None:
        target = self.directory / self.file_name(result)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            target.write_text(result.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise NotifierError("file", str(e))
        logger.debug("Результат прогона записан в %s", target)


NotifierFactory = Callable[[Mapping[str, Any]], Notifier]

NOTIFIERS: Dict[str, NotifierFactory] = {
    "log": LogNotifier.from_config,
    "file": FileNotifier.from_config,
}


class NotifierDispatcher:
    """
    Раздаёт PipelineResult нотификаторам репозитория.

    Ошибка одного нотификатора логируется и не мешает остальным:
    к этому моменту прогон уже принят и записан в кэш.
    """

    def __init__(self, registry: Mapping[str, NotifierFactory] = NOTIFIERS) -> None:
        self.registry = dict(registry)

    def build(self, spec: NotifierSpec) -> Notifier:
        factory = self.registry.get(spec.type)
        if factory is None:
            raise ConfigError(f"unknown notifier type {spec.type!r}")
        return factory(spec.config)

    def dispatch(self, specs: Sequence[NotifierSpec], result: PipelineResult) -> List[str]:
        """
        Возвращает типы нотификаторов, которые не смогли отправить результат.
        """
        failed: List[str] = []
        for spec in specs:
            try:
                self.build(spec).send(result)
            except (ConfigError, NotifierError) as e:
                logger.error("Нотификатор %s не отработал: %s", spec.type, e)
                failed.append(spec.type)
            except Exception:
                logger.exception("Нотификатор %s упал с непредвиденной ошибкой", spec.type)
                failed.append(spec.type)
        return failed
