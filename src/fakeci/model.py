from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from .exception import MissingSecretError


BUILD_KEYS = ("dockerfile", "context", "build_args")


class NamedImage(BaseModel):
    """
    Готовый образ из реестра: `image: rust` или `image: {name: docker:dind, privileged: true}`.
    """

    kind: Literal["named"] = "named"
    name: str
    privileged: bool = False


class BuiltImage(BaseModel):
    """
    Образ, который нужно собрать из Dockerfile репозитория.
    Пути dockerfile и context считаются от корня репозитория.
    """

    kind: Literal["build"] = "build"
    dockerfile: str = "Dockerfile"
    context: str = "."
    build_args: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    privileged: bool = False


ImageSpec = Annotated[Union[NamedImage, BuiltImage], Field(discriminator="kind")]


def _coerce_image(value: Any) -> Any:
    # строка -> готовый образ; словарь с ключами сборки -> сборка
    if value is None or isinstance(value, (NamedImage, BuiltImage)):
        return value
    if isinstance(value, str):
        return {"kind": "named", "name": value}
    if isinstance(value, dict) and "kind" not in value:
        if any(key in value for key in BUILD_KEYS):
            return {"kind": "build", **value}
        return {"kind": "named", **value}
    return value


def _stringify_command(value: Any) -> Any:
    # `exec: [true]` в YAML даёт bool, а это команда `true`
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _stringify_env(value: Any) -> Any:
    # YAML охотно превращает `1`/`true` в не-строки
    if isinstance(value, dict):
        return {str(k): "" if v is None else str(v) for k, v in value.items()}
    return value


class StepSpec(BaseModel):
    name: Optional[str] = None
    exec: List[str]

    @field_validator("exec", mode="before")
    @classmethod
    def coerce_commands(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_stringify_command(item) for item in value]
        return value

    @field_validator("exec")
    @classmethod
    def exec_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("a step needs at least one command in `exec`")
        return value

    def display_name(self, index: int) -> str:
        """
        Имя шага; для безымянного — `step {n}`, нумерация с единицы.
        """
        return self.name or f"step {index}"


class JobSpec(BaseModel):
    """
    Задача пайплайна: один контейнер на все её шаги.
    """

    name: Optional[str] = None
    image: Optional[ImageSpec] = None
    env: Dict[str, str] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    steps: List[StepSpec]

    @field_validator("image", mode="before")
    @classmethod
    def coerce_image(cls, value: Any) -> Any:
        return _coerce_image(value)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, value: Any) -> Any:
        return _stringify_env(value)

    @field_validator("volumes")
    @classmethod
    def volumes_have_target(cls, value: List[str]) -> List[str]:
        for volume in value:
            parts = volume.split(":")
            if len(parts) < 2 or not parts[0] or not parts[1]:
                raise ValueError(f"volume {volume!r} must look like `source:container-path`")
        return value


class DefaultSpec(BaseModel):
    image: Optional[ImageSpec] = None
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("image", mode="before")
    @classmethod
    def coerce_image(cls, value: Any) -> Any:
        return _coerce_image(value)

    @field_validator("env", mode="before")
    @classmethod
    def coerce_env(cls, value: Any) -> Any:
        return _stringify_env(value)


class PipelineSpec(BaseModel):
    """
    Разобранный `.fakeci.yml`.

    Инварианты проверяются при загрузке:
    - у каждой задачи есть ровно один источник образа (свой или из default);
    - имена задач уникальны, безымянные получают `job {n}`.
    """

    name: Optional[str] = None
    default: Optional[DefaultSpec] = None
    pipeline: List[JobSpec]

    @model_validator(mode="after")
    def check_jobs(self) -> "PipelineSpec":
        default_image = self.default.image if self.default else None
        seen = set()
        for index, job in enumerate(self.pipeline, start=1):
            if not job.name:
                job.name = f"job {index}"
            if job.name in seen:
                raise ValueError(f"duplicate job name {job.name!r}")
            seen.add(job.name)
            if job.image is None and default_image is None:
                raise ValueError(
                    f"job {job.name!r} has no image and no default image is defined"
                )
        return self


class ResolvedJob(BaseModel):
    """
    Задача после слияния с default: всё, что нужно исполнителю.
    """

    name: str
    image: ImageSpec
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: List[str] = Field(default_factory=list)
    steps: List[StepSpec]
    secrets: Dict[str, str] = Field(default_factory=dict)

    @property
    def privileged(self) -> bool:
        return self.image.privileged


def resolve_job(
    job: JobSpec,
    default: Optional[DefaultSpec] = None,
    environment: Optional[Dict[str, str]] = None,
    secrets: Optional[Dict[str, str]] = None,
) -> ResolvedJob:
    """
    Явное слияние задачи с default, поле за полем.

    - image: образ задачи, иначе образ из default;
    - env: default.env, поверх него env задачи (по ключам), затем окружение
      репозитория из конфига наблюдателя, затем объявленные задачей секреты.

    :raises MissingSecretError: задача просит секрет, которого нет в secrets.
    """
    image = job.image if job.image is not None else (default.image if default else None)
    if image is None:
        # PipelineSpec уже проверил это при загрузке; сюда попадают только вручную собранные задачи
        raise ValueError(f"job {job.name!r} has no image")

    env: Dict[str, str] = {}
    if default is not None:
        env.update(default.env)
    env.update(job.env)
    env.update(environment or {})

    provided = secrets or {}
    job_secrets: Dict[str, str] = {}
    for secret in job.secrets:
        if secret not in provided:
            raise MissingSecretError(job=job.name or "", secret=secret)
        job_secrets[secret] = provided[secret]
    env.update(job_secrets)

    return ResolvedJob(
        name=job.name or "",
        image=image,
        env=env,
        volumes=list(job.volumes),
        steps=list(job.steps),
        secrets=job_secrets,
    )
