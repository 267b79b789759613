from .core import (
    CWD_STATE_FILE,
    CommandOutput,
    ContainerEngine,
    DockerCLI,
    container_name,
    default_image_tag,
)

from .exceptions import (
    DockerExceptions,
    ImageResolutionError,
    ContainerError,
)

__all__ = [
    "CWD_STATE_FILE",
    "CommandOutput",
    "ContainerEngine",
    "DockerCLI",
    "container_name",
    "default_image_tag",
    "DockerExceptions",
    "ImageResolutionError",
    "ContainerError",
]
