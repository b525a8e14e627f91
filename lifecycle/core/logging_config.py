"""
Модуль для конфигурации логирования.

Все модули пишут в свой логгер (logging.getLogger(__name__)), а вывод
настраивается один раз на корневом логгере.
"""

import logging
import sys

from lifecycle.core.config import settings

LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - (%(filename)s).%(funcName)s(%(lineno)d) - %(message)s"

# Клиентские библиотеки пишут каждый HTTP-запрос на уровне INFO
NOISY_LOGGERS = ("httpx", "googleapiclient", "urllib3")


def setup_logging(level: int | str | None = None) -> None:
    """
    Направляет логи в stdout в едином формате.

    Args:
        level: Уровень логирования; имя ("DEBUG") или число.
            По умолчанию берётся из settings.log_level.
    """
    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        level = level.upper()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Повторный вызов заменяет обработчик, а не добавляет второй
    logging.basicConfig(level=level, handlers=[stdout_handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
