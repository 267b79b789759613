from pydantic import BaseModel, Field, field_validator
from typing import List, Dict, Any, Union

from ..settings import DEFAULT_WATCH_INTERVAL


# Одна строка (литерал или glob) или список таких строк
BranchesSpec = Union[str, List[str]]


class NotifierSpec(BaseModel):
    """
    Нотификатор репозитория: `{type: log}` или `{type: file, config: {path: ...}}`.
    """

    type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class WatchedRepository(BaseModel):
    name: str
    uri: str
    branches: BranchesSpec = "*"
    notifiers: List[NotifierSpec] = Field(default_factory=list)

    # Окружение и секреты, которые получают задачи этого репозитория
    environment: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict)

    @field_validator("branches")
    @classmethod
    def branches_not_empty(cls, value: BranchesSpec) -> BranchesSpec:
        patterns = [value] if isinstance(value, str) else value
        if not patterns or any(not p for p in patterns):
            raise ValueError("branches must be a non-empty pattern or list of patterns")
        return value

    @field_validator("environment", "secrets", mode="before")
    @classmethod
    def stringify_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    @property
    def branch_patterns(self) -> List[str]:
        return [self.branches] if isinstance(self.branches, str) else list(self.branches)


class WatcherConfig(BaseModel):
    """
    Конфиг режима `watch`: интервал опроса и список репозиториев.
    """

    watch_interval: int = DEFAULT_WATCH_INTERVAL
    repositories: List[WatchedRepository]

    @field_validator("watch_interval")
    @classmethod
    def interval_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("watch_interval must be a positive number of seconds")
        return value

    @field_validator("repositories")
    @classmethod
    def unique_names(cls, value: List[WatchedRepository]) -> List[WatchedRepository]:
        # имя репозитория служит ключом файла кэша
        names = [repo.name for repo in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate repository names: {', '.join(duplicates)}")
        return value
