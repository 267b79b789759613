from typing import List, Optional

from ....exception import FakeCIException


class DockerExceptions(FakeCIException):
    """
    Базовое исключение для работы с docker.
    """

    def __init__(
        self,
        *args,
        description: str = "Something happend when work with Docker",
        logs: Optional[List[str]] = None,
    ) -> None:
        super().__init__(*args, description=description, logs=logs)


class ImageResolutionError(DockerExceptions):
    """
    Образ не удалось скачать или собрать, задача падает до первого шага.
    """

    def __init__(
        self,
        image: str,
        reason: str = "",
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to resolve image {image}"
        if reason:
            description = f"{description}: {reason}"
        super().__init__(*args, description=description, logs=logs)
        self.image = image
        self.reason = reason


class ContainerError(DockerExceptions):
    """
    Не удалось создать (или запустить) контейнер задачи.
    """

    def __init__(
        self,
        container: str,
        reason: str = "",
        logs: Optional[List[str]] = None,
        *args,
    ) -> None:
        description = f"Error to start container {container}"
        if reason:
            description = f"{description}: {reason}"
        super().__init__(*args, description=description, logs=logs)
        self.container = container
        self.reason = reason
