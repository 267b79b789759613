from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from ....exception import ConfigError
from ....model import PipelineSpec
from ....models.schemas import WatcherConfig
from ...models import PipelineResult, PipelineSummary, Status


def _format_validation_error(error: ValidationError) -> str:
    parts: List[str] = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def _load_yaml(text: str, source: str) -> Dict[str, Any]:
    """
    YAML → dict с проверкой корня. Пустой документ считается ошибкой.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed YAML: {e}", source)
    if not isinstance(data, dict):
        kind = "empty document" if data is None else type(data).__name__
        raise ConfigError(f"expected a mapping at the top level, got {kind}", source)
    return data


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError("file not found", str(path))
    except OSError as e:
        raise ConfigError(f"cannot read file: {e}", str(path))


def parse_pipeline(text: str, source: str = ".fakeci.yml") -> PipelineSpec:
    """
    Разбирает `.fakeci.yml` в PipelineSpec.

    :raises ConfigError: битый YAML, неизвестная структура, задача без образа,
                         дубли имён задач, шаг без команд.
    """
    data = _load_yaml(text, source)
    try:
        return PipelineSpec.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e), source)


def load_pipeline(path: Path) -> PipelineSpec:
    return parse_pipeline(_read(path), str(path))


def parse_watch_config(
    text: str,
    source: str = "fake-ci.yml",
    known_notifiers: Optional[Iterable[str]] = None,
) -> WatcherConfig:
    """
    Разбирает конфиг наблюдателя.

    known_notifiers — допустимые значения `notifiers[].type`; если передан,
    неизвестный тип нотификатора считается ошибкой конфигурации.
    """
    data = _load_yaml(text, source)
    try:
        config = WatcherConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e), source)

    if known_notifiers is not None:
        known = set(known_notifiers)
        for repo in config.repositories:
            for notifier in repo.notifiers:
                if notifier.type not in known:
                    raise ConfigError(
                        f"repository {repo.name!r} uses unknown notifier type {notifier.type!r} "
                        f"(available: {', '.join(sorted(known))})",
                        source,
                    )
    return config


def load_watch_config(path: Path, known_notifiers: Optional[Iterable[str]] = None) -> WatcherConfig:
    return parse_watch_config(_read(path), str(path), known_notifiers)


def summarize_result(result: PipelineResult) -> PipelineSummary:
    """
    Строит краткое резюме прогона для CLI и нотификаторов.
    """
    job_names = [job.name for job in result.jobs]
    failed = [job.name for job in result.jobs if not job.success]

    target = result.name
    if result.revision is not None:
        target = f"{result.revision.repository}#{result.revision.branch} ({result.revision.commit[:10]})"

    if result.error is not None:
        description = f"Пайплайн {target} не запущен: {result.error}"
    elif not failed:
        description = f"Пайплайн {target}: все задачи ({len(job_names)}) прошли успешно."
    else:
        description = (
            f"Пайплайн {target}: упало {len(failed)} из {len(job_names)} задач: "
            f"{', '.join(failed)}."
        )

    return PipelineSummary(
        jobs_count=len(job_names),
        failed_jobs=failed,
        job_names=job_names,
        description=description,
    )


def render_result(result: PipelineResult, with_output: bool = False) -> str:
    """
    Многострочный текстовый отчёт: статус каждой задачи и шага,
    при with_output ещё и захваченный вывод.
    """
    summary = summarize_result(result)
    lines: List[str] = [summary.description]
    if result.commit is not None:
        title = result.commit.message.splitlines()[0] if result.commit.message else ""
        lines.append(f"Коммит {result.commit.hash[:10]} от {result.commit.author}: {title}")

    for job in result.jobs:
        mark = "OK" if job.success else "FAIL"
        lines.append(f"[{mark}] {job.name} ({job.duration:.1f} с)")
        if job.error:
            lines.append(f"    {job.error}")
        for step in job.steps:
            if step.status == Status.SKIPPED:
                lines.append(f"  - {step.name}: пропущен")
                continue
            lines.append(f"  - {step.name}: {step.status.value} (код {step.exit_code})")
            if with_output:
                for out in step.output:
                    lines.append(f"      {out.stream}: {out.line}")
    return "\n".join(lines)
