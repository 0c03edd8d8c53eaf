import logging
from collections import deque
from typing import Deque, List, Optional, Union


class EngineLogWriter:
    """
    Diagnostic sink that turns natty stderr into log records.

    Bytes are split into lines; each complete line becomes one record on
    the given logger. The last lines are kept in a ring buffer so that a
    failed session can show what the engine printed before it died.
    """

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
        maxlen: int = 200,
    ):
        self.log = log or logging.getLogger("natty.engine")
        self.level = level
        self.buffer: Deque[str] = deque(maxlen=maxlen)
        self._partial = b""

    def write(self, data: Union[bytes, str]) -> int:
        raw = data.encode("utf-8") if isinstance(data, str) else data
        chunk = self._partial + raw
        *lines, self._partial = chunk.split(b"\n")
        for line in lines:
            self._emit(line)
        return len(data)

    def flush(self) -> None:
        if self._partial:
            line, self._partial = self._partial, b""
            self._emit(line)

    def tail(self, count: Optional[int] = None) -> List[str]:
        lines = list(self.buffer)
        if count is not None:
            lines = lines[-count:] if count > 0 else []
        return lines

    def _emit(self, raw: bytes) -> None:
        text = raw.rstrip(b"\r").decode("utf-8", errors="replace")
        if not text:
            return
        self.buffer.append(text)
        self.log.log(self.level, "[NATTY] %s", text)
