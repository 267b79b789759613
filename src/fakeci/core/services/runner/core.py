import logging
from pathlib import Path
from typing import Dict, Optional

from ....exception import ConfigError
from ....model import PipelineSpec, resolve_job
from ...models import CommitInfo, PipelineResult, RevisionRef, utcnow
from ..executor import JobExecutor, failed_job


logger = logging.getLogger(__name__)


class PipelineRunner:
    """
    Прогоняет все задачи пайплайна по одной ревизии.

    Задачи идут строго по порядку объявления; упавшая задача не отменяет
    следующие, в отчёт попадает статус каждой.
    """

    def __init__(self, executor: JobExecutor) -> None:
        self.executor = executor

    async def run(
        self,
        spec: PipelineSpec,
        repo_path: Path,
        name: Optional[str] = None,
        revision: Optional[RevisionRef] = None,
        commit: Optional[CommitInfo] = None,
        environment: Optional[Dict[str, str]] = None,
        secrets: Optional[Dict[str, str]] = None,
    ) -> PipelineResult:
        result = PipelineResult(
            name=spec.name or name or (revision.repository if revision else repo_path.name),
            revision=revision,
            commit=commit,
        )
        logger.info("Запуск пайплайна \"%s\" (%d задач)", result.name, len(spec.pipeline))

        for job in spec.pipeline:
            try:
                resolved = resolve_job(job, spec.default, environment, secrets)
            except ConfigError as e:
                logger.error("Задача \"%s\" не может быть запущена: %s", job.name, e)
                result.jobs.append(failed_job(job.name or "", job.steps, str(e)))
                continue
            result.jobs.append(await self.executor.execute(resolved, repo_path))

        result.ended_at = utcnow()
        logger.info(
            "Пайплайн \"%s\" завершён: %s за %.1f с",
            result.name,
            result.status.value,
            result.duration,
        )
        return result
