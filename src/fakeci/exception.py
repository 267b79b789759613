from typing import List, Optional


class FakeCIException(Exception):
    """
    Базовое исключение fake-ci.

    description — человекочитаемое описание ошибки (его показывает CLI),
    logs        — шаги, накопленные к моменту ошибки.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend...",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(description, *args)
        self.description = description
        self.logs: List[str] = logs or []

    def __str__(self) -> str:
        return self.description


class ConfigError(FakeCIException):
    """
    Некорректный конфиг наблюдателя или пайплайна (.fakeci.yml).
    """

    def __init__(self, reason: str, source: Optional[str] = None, *args) -> None:
        description = f"Invalid configuration: {reason}"
        if source:
            description = f"Invalid configuration in {source}: {reason}"
        super().__init__(*args, description=description)
        self.reason = reason
        self.source = source


class MissingSecretError(ConfigError):
    """
    Задача объявила секрет, которого нет в конфиге репозитория.
    """

    def __init__(self, job: str, secret: str, *args) -> None:
        super().__init__(f"secret {secret} required by job {job!r} is not defined", None, *args)
        self.job = job
        self.secret = secret


class StepExecutionError(FakeCIException):
    """
    Команда шага завершилась с ненулевым кодом (или не завершилась вовремя).
    """

    def __init__(self, step: str, command: str, exit_code: Optional[int], *args) -> None:
        if exit_code is None:
            description = f"Command {command!r} of step {step!r} did not complete"
        else:
            description = f"Command {command!r} of step {step!r} exited with status {exit_code}"
        super().__init__(*args, description=description)
        self.step = step
        self.command = command
        self.exit_code = exit_code


class CacheIOError(FakeCIException):
    """
    Не удалось прочитать или надёжно записать кэш веток.
    """

    def __init__(self, path: str, reason: str, *args) -> None:
        description = f"Ref cache {path} is not usable: {reason}"
        super().__init__(*args, description=description)
        self.path = path
        self.reason = reason


class NotifierError(FakeCIException):
    """
    Ошибка отправки результата в нотификатор.
    """

    def __init__(self, notifier: str, reason: str, *args) -> None:
        description = f"Notifier {notifier} failed: {reason}"
        super().__init__(*args, description=description)
        self.notifier = notifier
