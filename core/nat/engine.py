"""
Natty Engine - Внешний процесс NAT traversal
============================================

[ENGINE] natty - отдельный исполняемый файл, который сам выполняет
ICE/STUN/TURN. Мы только запускаем его и общаемся через три pipe:
- stdin: входящие сигнальные сообщения от пира (по одному на строку)
- stdout: исходящие сигнальные сообщения и итоговый 5-tuple
- stderr: отладочный вывод

[INVOCATION]
    natty            # answerer
    natty -offer     # offerer
    natty ... -debug # подробный вывод в stderr

[BINARY] Бинарник можно взять:
1. По явному пути (NATTY_BINARY)
2. Из PATH (NATTY_BINARY_NAME)
3. Из байтов, распакованных в кэш-директорию
"""

import asyncio
import hashlib
import logging
import os
import shutil
import stat
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import List, Optional, Sequence, Union

from config import NattyConfig, config
from .errors import EngineSetupError

logger = logging.getLogger(__name__)


OFFER_FLAG = "-offer"
DEBUG_FLAG = "-debug"

# Права распакованного бинарника
BINARY_MODE = stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH


def build_params(offer: bool, debug: bool) -> List[str]:
    """Аргументы командной строки движка."""
    params = [OFFER_FLAG] if offer else []
    if debug:
        params.append(DEBUG_FLAG)
    return params


class EngineBinary:
    """
    Исполняемый файл движка.

    [USAGE]
    ```python
    binary = EngineBinary.locate(config.natty)
    binary = EngineBinary.from_bytes(asset_bytes)  # в config.natty.cache_dir
    binary = EngineBinary.from_path("fake_natty.py", interpreter=sys.executable)
    ```
    """

    def __init__(self, path: Union[str, Path], interpreter: Optional[str] = None):
        self.path = Path(path)
        self.interpreter = interpreter

    def __repr__(self) -> str:
        return f"EngineBinary(path={str(self.path)!r}, interpreter={self.interpreter!r})"

    def command(self, *params: str) -> List[str]:
        """Полная команда запуска."""
        argv = [self.interpreter] if self.interpreter else []
        argv.append(str(self.path))
        argv.extend(params)
        return argv

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        interpreter: Optional[str] = None,
    ) -> "EngineBinary":
        """
        Использовать существующий файл.

        Без интерпретатора файл должен быть исполняемым.
        """
        path = Path(path).expanduser()
        if not path.is_file():
            raise EngineSetupError(f"natty binary not found: {path}")
        if interpreter is None and not os.access(path, os.X_OK):
            raise EngineSetupError(f"natty binary is not executable: {path}")
        return cls(path, interpreter=interpreter)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        cache_dir: Optional[Union[str, Path]] = None,
        name: str = "natty",
    ) -> "EngineBinary":
        """
        Распаковать встроенный бинарник в кэш.

        [CACHE] Имя файла содержит префикс sha256, поэтому одинаковые байты
        переиспользуют уже записанный файл. Запись атомарная: временный файл
        в той же директории + os.replace.
        """
        if not data:
            raise EngineSetupError("natty binary data is empty")

        digest = hashlib.sha256(data).hexdigest()
        cache_path = Path(cache_dir or config.natty.cache_dir).expanduser()
        target = cache_path / f"{name}-{digest[:16]}"

        try:
            cache_path.mkdir(parents=True, exist_ok=True)

            if target.is_file() and _file_digest(target) == digest:
                if not os.access(target, os.X_OK):
                    os.chmod(target, BINARY_MODE)
                logger.debug(f"[ENGINE] Reusing cached binary {target}")
                return cls(target)

            fd, tmp_name = tempfile.mkstemp(prefix=f".{name}-", dir=cache_path)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.chmod(tmp_name, BINARY_MODE)
                os.replace(tmp_name, target)
            except BaseException:
                with suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise EngineSetupError(f"Cannot materialize natty binary in {cache_path}: {e}") from e

        logger.info(f"[ENGINE] Extracted binary to {target} ({len(data)} bytes)")
        return cls(target)

    @classmethod
    def locate(cls, cfg: NattyConfig) -> "EngineBinary":
        """Найти бинарник по конфигурации: явный путь, затем PATH."""
        if cfg.binary_path:
            return cls.from_path(cfg.binary_path)

        found = shutil.which(cfg.binary_name)
        if not found:
            raise EngineSetupError(
                f"natty binary '{cfg.binary_name}' not found in PATH "
                f"(set NATTY_BINARY to an explicit path)"
            )
        return cls(found)


class EngineProcess:
    """
    Запущенный процесс движка и его три потока.

    [LIFECYCLE]
    - spawn(): создает процесс с pipe на stdin/stdout/stderr
    - close_stdin(): закрывает stdin (движок видит EOF), идемпотентно
    - shutdown(): ждет выхода, затем SIGTERM, затем SIGKILL
    """

    def __init__(self, process: asyncio.subprocess.Process, argv: Sequence[str]):
        self.process = process
        self.argv = list(argv)
        self._stdin_closed = False

    @classmethod
    async def spawn(
        cls,
        binary: EngineBinary,
        params: Sequence[str],
        line_limit: int,
    ) -> "EngineProcess":
        argv = binary.command(*params)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=line_limit,
            )
        except OSError as e:
            raise EngineSetupError(f"Cannot start natty engine {argv[0]}: {e}") from e

        logger.info(f"[ENGINE] Started pid={process.pid}: {' '.join(argv)}")
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def stdin(self) -> asyncio.StreamWriter:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self.process.stderr

    async def wait(self) -> int:
        return await self.process.wait()

    def close_stdin(self) -> None:
        if self._stdin_closed:
            return
        self._stdin_closed = True
        self.process.stdin.close()

    def terminate(self) -> None:
        if self.process.returncode is not None:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

    async def shutdown(self, grace: float) -> Optional[int]:
        """
        Гарантированно завершить процесс.

        Закрываем stdin и ждем grace секунд; затем SIGTERM и снова grace;
        затем SIGKILL.
        """
        self.close_stdin()
        if self.process.returncode is not None:
            return self.process.returncode

        try:
            return await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            pass

        logger.debug(f"[ENGINE] pid={self.pid} still running, sending SIGTERM")
        self.terminate()
        try:
            return await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"[ENGINE] pid={self.pid} did not exit after SIGTERM, sending SIGKILL")

        try:
            self.process.kill()
        except ProcessLookupError:
            pass
        return await self.process.wait()


def _file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()

