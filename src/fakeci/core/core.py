import logging
from pathlib import Path
from typing import Dict, Optional

from ..exception import ConfigError
from ..models.schemas import WatchedRepository
from ..settings import PIPELINE_FILE
from .models import CommitInfo, PipelineResult, RevisionRef, utcnow
from .services.builders.pipeline import load_pipeline
from .services.docker_module import ContainerEngine, DockerCLI
from .services.executor import JobExecutor
from .services.git_module import GitFakeCI
from .services.git_module.models import LocalRepo
from .services.runner import PipelineRunner


logger = logging.getLogger(__name__)


class FakeCICore:
    """
    Склейка между наблюдателем и исполнителем: готовит рабочее дерево
    ревизии, читает из него `.fakeci.yml` и прогоняет пайплайн.
    """

    def __init__(
        self,
        git: Optional[GitFakeCI] = None,
        engine: Optional[ContainerEngine] = None,
        step_timeout: Optional[float] = None,
        pipeline_file: str = PIPELINE_FILE,
    ) -> None:
        self.git = git or GitFakeCI()
        self.runner = PipelineRunner(JobExecutor(engine or DockerCLI(), step_timeout=step_timeout))
        self.pipeline_file = pipeline_file

    async def launch(self, repo: WatchedRepository, ref: RevisionRef) -> PipelineResult:
        """
        Прогон пайплайна по ревизии, найденной наблюдателем.

        :raises GitCloneError: ревизию не удалось получить, прогон не принят;
                               наблюдатель повторит его на следующем тике.
        """
        logger.info("Обнаружены изменения в %s#%s (%s)", repo.name, ref.branch, ref.commit)
        cloned: LocalRepo = await self.git.clone(repo.uri, ref.branch, ref.commit)
        try:
            for line in cloned.logs:
                logger.debug("%s", line)
            commit = await self.git.commit_info(cloned.repo_path)
            return await self._execute(
                cloned.repo_path,
                name=repo.name,
                revision=ref,
                commit=commit,
                environment=repo.environment,
                secrets=repo.secrets,
            )
        finally:
            cloned.cleanup()
            logger.debug("Временная папка с репозиторием %s удалена.", cloned.root_dir)

    async def run_local(self, path: Path, pipeline_file: Optional[str] = None) -> PipelineResult:
        """
        Прогон пайплайна существующей директории (режим `fakeci run`).

        :raises GitLocalPathError: путь не существует или не директория.
        :raises ConfigError: нет или невалиден файл пайплайна.
        """
        local = await self.git.from_existing_path(path)
        spec_path = local.repo_path / (pipeline_file or self.pipeline_file)
        spec = load_pipeline(spec_path)
        commit = await self.git.commit_info(local.repo_path)
        return await self.runner.run(spec, local.repo_path, name=local.repo_path.name, commit=commit)

    async def _execute(
        self,
        repo_path: Path,
        name: str,
        revision: RevisionRef,
        commit: Optional[CommitInfo],
        environment: Dict[str, str],
        secrets: Dict[str, str],
    ) -> PipelineResult:
        try:
            spec = load_pipeline(repo_path / self.pipeline_file)
        except ConfigError as e:
            # сломанный .fakeci.yml в ветке считается упавшим прогоном
            logger.warning("%s#%s: %s", revision.repository, revision.branch, e)
            return PipelineResult(
                name=name,
                revision=revision,
                commit=commit,
                error=str(e),
                ended_at=utcnow(),
            )
        return await self.runner.run(
            spec,
            repo_path,
            name=name,
            revision=revision,
            commit=commit,
            environment=environment,
            secrets=secrets,
        )
