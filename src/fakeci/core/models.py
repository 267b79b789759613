from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RevisionRef(BaseModel):
    """
    Конкретный коммит на конкретной ветке наблюдаемого репозитория.
    """

    repository: str
    uri: str = ""
    branch: str
    commit: str
    discovered_at: datetime = Field(default_factory=utcnow)


class CommitInfo(BaseModel):
    hash: str
    author: str = ""
    email: str = ""
    message: str = ""
    date: Optional[datetime] = None


class OutputLine(BaseModel):
    stream: Literal["stdout", "stderr"]
    line: str


class StepResult(BaseModel):
    name: str
    status: Status
    exit_code: Optional[int] = None
    # Команды, которые реально запускались, по порядку
    commands_run: List[str] = Field(default_factory=list)
    output: List[OutputLine] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def duration(self) -> float:
        if self.started_at is None or self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def lines(self, stream: str) -> List[str]:
        return [o.line for o in self.output if o.stream == stream]


class JobResult(BaseModel):
    """
    Результат одной задачи.

    status  — FAILED, если упал хотя бы один шаг или задача не дошла до шагов
              (образ, контейнер, секреты); причина тогда лежит в error.
    steps   — все шаги задачи по порядку, невыполненные помечены SKIPPED.
    """

    name: str
    status: Status = Status.SUCCESS
    steps: List[StepResult] = Field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def duration(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()


class PipelineResult(BaseModel):
    """
    Итог прогона пайплайна против одной ревизии — то, что уходит нотификаторам.
    """

    name: str
    revision: Optional[RevisionRef] = None
    commit: Optional[CommitInfo] = None
    jobs: List[JobResult] = Field(default_factory=list)
    # Ошибка уровня пайплайна: нет .fakeci.yml, невалидный конфиг и т.п.
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def status(self) -> Status:
        if self.error is not None:
            return Status.FAILED
        if all(job.success for job in self.jobs):
            return Status.SUCCESS
        return Status.FAILED

    @property
    def success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def duration(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()


class PipelineSummary(BaseModel):
    jobs_count: int
    failed_jobs: List[str]
    job_names: List[str]
    # Короткое текстовое описание для CLI и нотификаторов
    description: str
