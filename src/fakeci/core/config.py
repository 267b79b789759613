from pathlib import Path
import os
from tempfile import gettempdir

"""
Базовые пути fake-ci.

Временные клоны репозиториев складываются в системный /tmp/fake-ci
(переопределяется переменной окружения FAKECI_WORKDIR).

Кэш веток лежит в пользовательском каталоге кэша:
FAKECI_CACHE_DIR, иначе $XDG_CACHE_HOME/fake-ci, иначе ~/.cache/fake-ci.
"""

BASE_TEMP_DIR = Path(
    os.getenv("FAKECI_WORKDIR", gettempdir())
) / "fake-ci"


def cache_dir() -> Path:
    explicit = os.getenv("FAKECI_CACHE_DIR")
    if explicit:
        return Path(explicit)
    xdg = os.getenv("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / "fake-ci"
    return Path.home() / ".cache" / "fake-ci"
