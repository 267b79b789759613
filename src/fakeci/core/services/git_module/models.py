import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List
from .utils import on_rm_error

logger = logging.getLogger(__name__)


@dataclass
class LocalRepo:
    """
    Подготовленная для прогона копия репозитория.

    root_dir     — корневая папка, в которой лежит репозиторий.
                   Для временных клонов — это временная директория.
    repo_path    — путь к рабочему дереву (монтируется в /code).
    logs         — текстовые логи шагов подготовки.
    is_temporary — если True, cleanup() удалит root_dir; если False — нет.
    """
    
    root_dir: Path
    repo_path: Path
    logs: List[str]
    is_temporary: bool = True

    def cleanup(self) -> None:
        """
        Удаляет временную папку с репозиторием, если is_temporary = True.
        Для существующих локальных путей (is_temporary = False) ничего не делает.

        Ошибки удаления только логируются.
        """
        if not (self.is_temporary and self.root_dir.exists()):
            return
        try:
            if sys.version_info >= (3, 12):
                shutil.rmtree(self.root_dir, onexc=on_rm_error)
            else:
                shutil.rmtree(self.root_dir, onerror=on_rm_error)
        except OSError as e:
            logger.warning("Временная папка %s удалена не полностью: %s", self.root_dir, e)
