from .core import GitFakeCI
from .models import LocalRepo

from .exceptions import (
    GitExceptions,
    RepositoryAccessError,
    GitCloneError,
    GitLocalPathError,
)

__all__ = [
    "GitFakeCI",
    "LocalRepo",
    "GitExceptions",
    "RepositoryAccessError",
    "GitCloneError",
    "GitLocalPathError",
]
