"""
Natty Errors
============

[ERRORS] Иерархия ошибок сессии natty:
- EngineSetupError: не удалось подготовить бинарник или запустить процесс
- FiveTupleDecodeError: результат движка не разобран
- EngineIOError: ошибка чтения/записи потоков движка
- EngineExitError: движок завершился с ненулевым кодом
- SignalingError: отправка сигнального сообщения пиру упала
- SessionStateError: неверное использование сессии
- NattyTimeoutError: истек таймаут, заданный вызывающим
"""

from typing import Optional


class NattyError(Exception):
    """Базовая ошибка natty."""
    pass


class EngineSetupError(NattyError):
    """Бинарник движка не подготовлен или процесс не запустился."""
    pass


class FiveTupleDecodeError(NattyError):
    """Запись с 5-tuple не удалось декодировать."""

    def __init__(self, message: str, record: Optional[str] = None):
        super().__init__(message)
        self.record = record


class EngineIOError(NattyError):
    """Ошибка ввода-вывода на stdin/stdout/stderr движка."""
    pass


class EngineExitError(NattyError):
    """Процесс движка завершился аварийно."""

    def __init__(self, returncode: int):
        super().__init__(f"natty engine exited with status {returncode}")
        self.returncode = returncode


class SignalingError(NattyError):
    """Callback отправки сообщений выбросил исключение."""
    pass


class SessionStateError(NattyError):
    """Операция недопустима в текущем состоянии сессии."""
    pass


class NattyTimeoutError(NattyError, TimeoutError):
    """NAT traversal не завершился за отведенное время."""
    pass
