from typing import List, Optional

from ....exception import FakeCIException


class GitExceptions(FakeCIException):
    """
    Базовое исключение для работы с Git/репозиториями.

    Дополнительно хранит логи (steps), накопленные во время операции.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend when work with Git",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(*args, description=description, logs=logs)


class RepositoryAccessError(GitExceptions):
    """
    Не удалось опросить удалённый репозиторий: сеть, авторизация, кривой URI.
    """

    def __init__(
        self,
        repository: str,
        reason: str = "",
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to list remote branches of {repository}"
        if reason:
            description = f"{description}: {reason}"
        super().__init__(*args, description=description, logs=logs)
        self.repository = repository
        self.reason = reason


class GitCloneError(GitExceptions):
    """
    Ошибка при клонировании удалённого репозитория или переключении на коммит.
    """

    def __init__(
        self,
        repository: str,
        branch: str,
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to clone repository {repository} in branch {branch}"
        super().__init__(*args, description=description, logs=logs)
        self.repository = repository
        self.branch = branch


class GitLocalPathError(GitExceptions):
    """
    Ошибка при использовании локального пути до репозитория/проекта.
    """

    def __init__(
        self,
        path: str,
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to use local repository path {path}"
        super().__init__(*args, description=description, logs=logs)
        self.path = path
