import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional

import yaml

from ....exception import CacheIOError
from ..git_module.utils import PathLike


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
# Суффикс, который cache_file_name дописывает к очищенным именам
_HASHED_SUFFIX = re.compile(r"-[0-9a-f]{8}$")


def cache_file_name(repository: str) -> str:
    """
    Имя файла кэша для репозитория.

    Безопасное имя остаётся как есть (`app` -> `app.yml`). Если имя пришлось
    чистить, к нему добавляется хэш исходного имени: `org/app` и `org_app`
    получают разные файлы (`org_app-<hash>.yml` и `org_app.yml`).
    """
    slug = _UNSAFE_CHARS.sub("_", repository).strip("._") or "repository"
    if slug == repository and not _HASHED_SUFFIX.search(repository):
        return f"{slug}.yml"
    digest = hashlib.sha1(repository.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}.yml"


class RefCache:
    """
    Последний увиденный коммит для каждой пары (репозиторий, ветка).

    Один YAML-файл на репозиторий с полным словарём {ветка: коммит}.
    Файл всегда переписывается целиком через временный файл + os.replace,
    так что читатель видит либо старую, либо новую версию, но не половину.

    Записи не удаляются: ветка, пропавшая с remote, просто остаётся в файле.
    """

    def __init__(self, directory: PathLike) -> None:
        self.directory = Path(directory)
        self._entries: Dict[str, Dict[str, str]] = {}

    def path_for(self, repository: str) -> Path:
        return self.directory / cache_file_name(repository)

    def entries(self, repository: str) -> Dict[str, str]:
        """
        Все известные ветки репозитория. Файл читается один раз на процесс;
        дальше единственный писатель (наблюдатель) держит копию в памяти.
        """
        if repository not in self._entries:
            self._entries[repository] = self._read(repository)
        return dict(self._entries[repository])

    def get(self, repository: str, branch: str) -> Optional[str]:
        return self.entries(repository).get(branch)

    def set(self, repository: str, branch: str, commit: str) -> None:
        """
        Запоминает коммит и синхронно сбрасывает файл на диск.

        :raises CacheIOError: если запись не удалось сделать надёжной.
        """
        refs = self.entries(repository)
        refs[branch] = commit
        self._write(repository, refs)
        self._entries[repository] = refs

    def _read(self, repository: str) -> Dict[str, str]:
        path = self.path_for(repository)
        if not path.exists():
            logger.debug("Кэш веток для %s ещё не создан (%s)", repository, path)
            return {}
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise CacheIOError(str(path), f"expected a mapping, got {type(data).__name__}")
            return {str(k): str(v) for k, v in data.items()}
        except (OSError, yaml.YAMLError, CacheIOError) as e:
            # нечитаемый кэш = «ничего не видели», все ветки перезапустятся
            logger.warning("Не удалось прочитать кэш веток %s, начинаем с чистого листа: %s", path, e)
            return {}

    def _write(self, repository: str, refs: Dict[str, str]) -> None:
        path = self.path_for(repository)
        temp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                delete=False,
                dir=str(path.parent),
                prefix=path.name + ".",
                suffix=".tmp",
            ) as handle:
                temp_path = Path(handle.name)
                yaml.safe_dump(refs, handle, default_flow_style=False, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, path)
            self._fsync_dir(path.parent)
        except OSError as e:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink()
            raise CacheIOError(str(path), str(e))
        logger.debug("Кэш веток %s сохранён (%d веток)", path, len(refs))

    @staticmethod
    def _fsync_dir(directory: Path) -> None:
        # переименование переживает падение только после fsync каталога
        if os.name != "posix":
            return
        fd = os.open(str(directory), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
