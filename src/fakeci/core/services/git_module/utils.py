import logging
import os
import re
import stat
from pathlib import Path
from typing import Dict, Union


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Строка вывода `git ls-remote --heads`: "<sha>\trefs/heads/<branch>"
REF_PATTERN = re.compile(r"^([0-9a-fA-F]+)\s+refs/heads/(\S+)$")


def parse_ls_remote(output: str) -> Dict[str, str]:
    """
    Разбирает вывод `git ls-remote --heads` в {ветка: коммит},
    сохраняя порядок, в котором git вернул ветки.
    """
    heads: Dict[str, str] = {}
    for line in output.splitlines():
        match = REF_PATTERN.match(line.strip())
        if match:
            heads[match.group(2)] = match.group(1)
    return heads


def on_rm_error(func, path, exc_info):
    """
    Обработчик ошибок для shutil.rmtree:
    - снимает флаг read-only (частый кейс для .git/objects/pack),
    - повторно вызывает функцию удаления,
    - если снова не получилось, пишет в лог и идёт дальше (cleanup best-effort).

    Типичный случай: файлы, созданные задачей от root внутри /code.
    """
    try:
        os.chmod(path, stat.S_IWRITE)
        func(path)
    except OSError as e:
        logger.warning("Не удалось удалить %s: %s", path, e)


def ensure_base_temp_dir(path: PathLike) -> Path:
    """
    Гарантирует, что BASE_TEMP_DIR существует, и возвращает его как Path.
    """
    base = Path(path)
    base.mkdir(parents=True, exist_ok=True)
    return base
