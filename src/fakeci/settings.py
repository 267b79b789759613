VERSION = "0.3.0"

LOGO = r"""
  __       _                  _
 / _| __ _| | _____       ___(_)
| |_ / _` | |/ / _ \_____/ __| |
|  _| (_| |   <  __/_____| (__| |
|_|  \__,_|_|\_\___|      \___|_|
"""

# Файл пайплайна в корне репозитория
PIPELINE_FILE = ".fakeci.yml"

# Конфиг наблюдателя по умолчанию
DEFAULT_CONFIG_FILE = "fake-ci.yml"

DEFAULT_WATCH_INTERVAL = 300

# Куда монтируется репозиторий внутри контейнера
CODE_MOUNT = "/code"
