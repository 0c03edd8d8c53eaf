"""
Natty Configuration
===================
Централизованная конфигурация сессий natty.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import os

# ============================================================================
# Environment Overrides
# ============================================================================

# Путь к бинарнику движка (.env: NATTY_BINARY)
NATTY_BINARY: str = os.getenv("NATTY_BINARY", "").strip()

# Имя бинарника для поиска в PATH
NATTY_BINARY_NAME: str = os.getenv("NATTY_BINARY_NAME", "natty").strip() or "natty"

# Куда распаковывать встроенный бинарник
NATTY_CACHE_DIR: str = os.getenv(
    "NATTY_CACHE_DIR",
    str(Path.home() / ".cache" / "natty"),
).strip()

# Отладочный вывод движка
NATTY_DEBUG: bool = os.getenv("NATTY_DEBUG", "False").lower() == "true"

NATTY_TIMEOUT_ENV = os.getenv("NATTY_TIMEOUT", "").strip()
try:
    NATTY_TIMEOUT: Optional[float] = float(NATTY_TIMEOUT_ENV) if NATTY_TIMEOUT_ENV else None
except ValueError:
    NATTY_TIMEOUT = None


@dataclass
class NattyConfig:
    """Настройки сессии natty."""

    # Явный путь к бинарнику (пусто = искать в PATH)
    binary_path: str = NATTY_BINARY

    # Имя бинарника в PATH
    binary_name: str = NATTY_BINARY_NAME

    # Директория для распакованного бинарника
    cache_dir: str = NATTY_CACHE_DIR

    # Включить -debug у движка в CLI
    debug: bool = NATTY_DEBUG

    # Таймаут traversal для CLI (None = ждать бесконечно)
    default_timeout: Optional[float] = NATTY_TIMEOUT

    # Емкость очереди ошибок (>= 10, чтобы источники не блокировались)
    error_queue_size: int = 10

    # Максимальная длина строки stdout движка (байты)
    line_limit: int = 1024 * 1024

    # Размер блока при копировании stderr
    stderr_chunk_size: int = 4096

    # Сколько ждать дочитывания stdout/stderr после выхода процесса (секунды)
    drain_timeout: float = 5.0

    # Сколько ждать выхода движка после закрытия stdin (секунды)
    # Затем SIGTERM, еще столько же, затем SIGKILL
    shutdown_timeout: float = 5.0


@dataclass
class Config:
    """Главный конфигурационный класс."""

    natty: NattyConfig = field(default_factory=NattyConfig)


# Глобальный экземпляр конфигурации
config = Config()
