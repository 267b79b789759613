import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ....exception import StepExecutionError
from ....model import BuiltImage, ImageSpec, ResolvedJob, StepSpec
from ...models import JobResult, OutputLine, Status, StepResult, utcnow
from ..docker_module import ContainerEngine, DockerExceptions, container_name, default_image_tag


logger = logging.getLogger(__name__)

SECRET_MASK = "***"


def skipped_steps(steps: Sequence[StepSpec], start: int = 1) -> List[StepResult]:
    return [
        StepResult(name=step.display_name(index), status=Status.SKIPPED)
        for index, step in enumerate(steps, start=start)
    ]


def failed_job(name: str, steps: Sequence[StepSpec], error: str) -> JobResult:
    """
    Задача, упавшая до первого шага (образ, контейнер, секреты).
    """
    result = JobResult(name=name, status=Status.FAILED, error=error)
    result.steps = skipped_steps(steps)
    result.ended_at = utcnow()
    return result


def mask_secrets(line: str, secrets: Dict[str, str]) -> str:
    for value in secrets.values():
        if value:
            line = line.replace(value, SECRET_MASK)
    return line


class JobExecutor:
    """
    Выполняет одну задачу пайплайна в собственном контейнере.

    - образ: готовый скачивается при отсутствии, описанный через dockerfile собирается;
    - контейнер один на задачу: репозиторий в /code, тома по порядку, env, privileged;
    - шаги и их команды строго по порядку, первая ненулевая команда
      роняет шаг и задачу, остальное помечается SKIPPED;
    - контейнер удаляется всегда, чем бы задача ни закончилась.

    step_timeout — лимит на одну команду в секундах; по умолчанию без лимита.
    """

    def __init__(self, engine: ContainerEngine, step_timeout: Optional[float] = None) -> None:
        self.engine = engine
        self.step_timeout = step_timeout

    async def resolve_image(self, image: ImageSpec, job_name: str, repo_path: Path) -> str:
        """
        Приводит описание образа к одному тегу, готовому для `docker run`.

        :raises ImageResolutionError: pull или build не удался.
        """
        if isinstance(image, BuiltImage):
            tag = image.name or default_image_tag(job_name)
            logger.info("Собираем образ %s из %s (контекст %s)", tag, image.dockerfile, image.context)
            await self.engine.build_image(
                tag,
                image.dockerfile,
                image.context,
                image.build_args,
                repo_path,
            )
            return tag

        if not await self.engine.image_exists(image.name):
            logger.info("Скачиваем образ %s", image.name)
            await self.engine.pull_image(image.name)
        return image.name

    async def execute(self, job: ResolvedJob, repo_path: Path) -> JobResult:
        logger.info("Запуск задачи \"%s\"", job.name)

        try:
            image = await self.resolve_image(job.image, job.name, repo_path)
        except DockerExceptions as e:
            logger.error("Задача \"%s\": образ недоступен: %s", job.name, e)
            return failed_job(job.name, job.steps, str(e))

        result = JobResult(name=job.name)
        cname = container_name(job.name)
        try:
            await self.engine.create_container(
                cname,
                image,
                repo_path,
                job.volumes,
                job.env,
                job.privileged,
            )
            logger.debug("Контейнер %s создан из %s", cname, image)
            await self._run_steps(cname, job, result)
        except DockerExceptions as e:
            logger.error("Задача \"%s\": ошибка docker: %s", job.name, e)
            result.status = Status.FAILED
            result.error = str(e)
            done = len(result.steps)
            result.steps.extend(skipped_steps(job.steps[done:], start=done + 1))
        finally:
            await self._remove(cname)
            result.ended_at = utcnow()

        logger.info(
            "Задача \"%s\" завершена: %s за %.1f с",
            job.name,
            result.status.value,
            result.duration,
        )
        return result

    async def _run_steps(self, container: str, job: ResolvedJob, result: JobResult) -> None:
        for index, step in enumerate(job.steps, start=1):
            step_result = StepResult(
                name=step.display_name(index),
                status=Status.SUCCESS,
                started_at=utcnow(),
            )
            result.steps.append(step_result)
            try:
                await self._run_step(container, step, step_result, job.secrets)
            except StepExecutionError as e:
                logger.error(
                    "Шаг \"%s\" завершился с ошибкой, остальные шаги пропускаются",
                    step_result.name,
                )
                result.status = Status.FAILED
                result.error = str(e)
                result.steps.extend(skipped_steps(job.steps[index:], start=index + 1))
                return

    async def _run_step(
        self,
        container: str,
        step: StepSpec,
        result: StepResult,
        secrets: Dict[str, str],
    ) -> None:
        """
        :raises StepExecutionError: на первой команде с ненулевым кодом.
        """
        logger.info(" Запуск шага \"%s\"", result.name)
        try:
            for command in step.exec:
                logger.info("  - %s", command)
                result.commands_run.append(command)
                output = await self.engine.exec(container, command, timeout=self.step_timeout)
                for line in output.lines:
                    text = mask_secrets(line.line, secrets)
                    result.output.append(OutputLine(stream=line.stream, line=text))
                    logger.debug("    %s: %s", line.stream, text)
                result.exit_code = output.exit_code
                if output.exit_code != 0:
                    result.status = Status.FAILED
                    raise StepExecutionError(result.name, command, output.exit_code)
        except DockerExceptions:
            result.status = Status.FAILED
            raise
        finally:
            result.ended_at = utcnow()

    async def _remove(self, container: str) -> None:
        try:
            await self.engine.remove_container(container)
            logger.debug("Контейнер %s удалён", container)
        except DockerExceptions as e:
            # результат задачи уже посчитан
            logger.error("Не удалось удалить контейнер %s: %s", container, e)
