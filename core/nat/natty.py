"""
Natty Session - Оркестрация NAT traversal через внешний движок
==============================================================

[SESSION] Один объект Natty = один запуск движка в роли offerer или
answerer. Сам traversal выполняет движок; мы переносим сигнальные
сообщения между ним и удаленным пиром через транспорт приложения.

[TASKS] Во время сессии работают четыре asyncio задачи:
- stdout router: строки stdout -> send() или 5-tuple
- stderr relay: stderr -> debug_out (или в никуда)
- process wait: код выхода движка -> очередь ошибок
- inbound pump: receive() -> stdin движка, по одному сообщению

[COMPLETION] Главный цикл ждет либо 5-tuple, либо фатальную ошибку.
EOFError и None в очереди ошибок - штатное завершение одного потока,
а не всей сессии.

[LIMITATION] Если движок не выдает результат и не падает, offer()/answer()
ждут бесконечно. Для ограничения используйте timeout или отмену задачи.

[USAGE]
```python
async def send(msg: bytes) -> None:
    await signaling.publish(peer_id, msg)

natty = Natty(send)
signaling.on_message(peer_id, natty.receive)
five_tuple = await natty.offer(timeout=30)
```
"""

import asyncio
import codecs
import io
import logging
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Set, Tuple, Union

from config import NattyConfig, config
from .engine import EngineBinary, EngineProcess, build_params
from .errors import (
    EngineExitError,
    EngineIOError,
    FiveTupleDecodeError,
    NattyError,
    NattyTimeoutError,
    SessionStateError,
    SignalingError,
)
from .five_tuple import FiveTuple, is_result_record

logger = logging.getLogger(__name__)


SendCallback = Callable[[bytes], Union[None, Awaitable[None]]]
InboundItem = Tuple[bytes, "asyncio.Future[None]"]


class NattyState(Enum):
    """Состояние сессии."""
    NEW = auto()
    RUNNING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


class Natty:
    """
    Сессия NAT traversal поверх процесса natty.

    Args:
        send: вызывается для каждого сообщения, которое нужно передать
            другому natty (SDP, ICE candidates). Может быть корутиной.
        debug_out: необязательный sink с методом write() для stderr движка.
            Если задан, движок запускается с -debug. Текстовым считается
            только наследник io.TextIOBase: он получает str (UTF-8), любой
            другой объект получает bytes как есть.
        binary: исполняемый файл движка (по умолчанию EngineBinary.locate)
        cfg: настройки сессии
    """

    def __init__(
        self,
        send: SendCallback,
        debug_out: Optional[Any] = None,
        *,
        binary: Optional[EngineBinary] = None,
        cfg: Optional[NattyConfig] = None,
    ):
        self._send = send
        self._debug_out = debug_out
        self._binary = binary
        self._cfg = cfg or config.natty

        self._state = NattyState.NEW
        self._finished = False
        self._engine: Optional[EngineProcess] = None
        self._tasks: Set[asyncio.Task] = set()

        # Каналы сессии
        self._inbound: "asyncio.Queue[InboundItem]" = asyncio.Queue()
        self._errors: "asyncio.Queue[Optional[BaseException]]" = asyncio.Queue(
            maxsize=max(self._cfg.error_queue_size, 10)
        )
        self._result: Optional["asyncio.Future[FiveTuple]"] = None
        self._five_tuple: Optional[FiveTuple] = None

    @property
    def state(self) -> NattyState:
        return self._state

    @property
    def result(self) -> Optional[FiveTuple]:
        return self._five_tuple

    @property
    def engine(self) -> Optional[EngineProcess]:
        return self._engine

    # ========================================================================
    # Public API
    # ========================================================================

    async def offer(self, timeout: Optional[float] = None) -> FiveTuple:
        """
        Запустить natty как Offerer (инициирует ICE сессию).

        Возвращает 5-tuple после успешного traversal. Без timeout ждет
        бесконечно, если движок не завершается и не выдает результат.

        Raises:
            NattyError: фатальная ошибка сессии
            NattyTimeoutError: истек timeout
        """
        return await self._run(offer=True, timeout=timeout)

    async def answer(self, timeout: Optional[float] = None) -> FiveTuple:
        """
        Запустить natty как Answerer (принимает offer от другого natty).

        Контракт тот же, что у offer().
        """
        return await self._run(offer=False, timeout=timeout)

    async def receive(self, msg: bytes) -> None:
        """
        Передать движку сообщение от другого natty.

        Возвращается, когда сообщение (с завершающим переводом строки)
        записано в stdin движка.

        Raises:
            EngineIOError: запись не удалась
            SessionStateError: сессия уже завершена
        """
        if self._finished:
            raise SessionStateError("natty session is finished")

        done: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        await self._inbound.put((bytes(msg), done))
        await done

    async def close(self) -> None:
        """Завершить сессию, если она еще работает (например, после отмены)."""
        self._finished = True
        for task in list(self._tasks):
            task.cancel()
        if self._engine is not None:
            self._engine.terminate()
            await self._engine.shutdown(grace=self._cfg.shutdown_timeout)
        self._fail_pending_inbound()
        if self._state in (NattyState.NEW, NattyState.RUNNING):
            self._state = NattyState.FAILED

    # ========================================================================
    # Session Controller
    # ========================================================================

    async def _run(self, offer: bool, timeout: Optional[float]) -> FiveTuple:
        if self._state is not NattyState.NEW:
            raise SessionStateError(f"natty session already {self._state.name.lower()}")
        self._state = NattyState.RUNNING
        role = "offerer" if offer else "answerer"

        try:
            engine = await self._start_engine(offer)
        except BaseException:
            self._state = NattyState.FAILED
            self._finished = True
            self._fail_pending_inbound()
            raise

        logger.info(f"[NATTY] Running as {role} (pid={engine.pid})")
        self._result = asyncio.get_running_loop().create_future()

        router = self._spawn(self._route_stdout(engine), "natty-stdout")
        relay = self._spawn(self._relay_stderr(engine), "natty-stderr")
        waiter = self._spawn(self._wait_process(engine, {router, relay}), "natty-wait")
        pump = self._spawn(self._pump_inbound(engine), "natty-stdin")

        aborted = True
        try:
            if timeout is None:
                five_tuple = await self._await_outcome()
            else:
                try:
                    five_tuple = await asyncio.wait_for(self._await_outcome(), timeout=timeout)
                except asyncio.TimeoutError:
                    raise NattyTimeoutError(
                        f"NAT traversal did not finish within {timeout:.1f}s"
                    ) from None
            aborted = False
        except BaseException as e:
            self._state = NattyState.FAILED
            if isinstance(e, NattyError):
                logger.warning(f"[NATTY] {role} failed: {e}")
            raise
        finally:
            await self._teardown(engine, waiter, pump, aborted)

        self._five_tuple = five_tuple
        self._state = NattyState.SUCCEEDED
        logger.info(
            f"[NATTY] {role} connected: {five_tuple.proto.value} "
            f"{five_tuple.local} -> {five_tuple.remote}"
        )
        return five_tuple

    async def _start_engine(self, offer: bool) -> EngineProcess:
        binary = self._binary or EngineBinary.locate(self._cfg)
        params = build_params(offer=offer, debug=self._debug_out is not None)
        self._engine = await EngineProcess.spawn(binary, params, self._cfg.line_limit)
        return self._engine

    async def _await_outcome(self) -> FiveTuple:
        """Ждать 5-tuple или первую фатальную ошибку."""
        while True:
            next_error = asyncio.ensure_future(self._errors.get())
            try:
                done, _ = await asyncio.wait(
                    {self._result, next_error},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                if not next_error.done():
                    next_error.cancel()

            if self._result in done:
                return self._result.result()

            err = next_error.result()
            if err is None or isinstance(err, EOFError):
                logger.debug(f"[NATTY] Ignoring end of stream: {err!r}")
                continue
            raise err

    async def _teardown(
        self,
        engine: EngineProcess,
        waiter: asyncio.Task,
        pump: asyncio.Task,
        aborted: bool,
    ) -> None:
        """
        Освободить процесс и потоки на любом пути выхода.

        После успеха движку дается shutdown_timeout на выход после закрытия
        stdin. После ошибки, отмены или таймаута сначала отправляется SIGTERM.
        """
        self._finished = True
        pump.cancel()
        self._fail_pending_inbound()

        if aborted:
            engine.terminate()
        try:
            await asyncio.shield(engine.shutdown(grace=self._cfg.shutdown_timeout))
            await asyncio.wait({waiter})
        finally:
            for task in list(self._tasks):
                task.cancel()
            if self._result is not None and not self._result.done():
                self._result.cancel()
            logger.debug(f"[NATTY] Engine pid={engine.pid} released (exit={engine.returncode})")

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _post_error(self, err: Optional[BaseException]) -> None:
        try:
            self._errors.put_nowait(err)
        except asyncio.QueueFull:
            logger.warning(f"[NATTY] Error queue full, dropping: {err!r}")

    def _fail_pending_inbound(self) -> None:
        while not self._inbound.empty():
            _, done = self._inbound.get_nowait()
            _settle(done, SessionStateError("natty session is finished"))

    # ========================================================================
    # Activities
    # ========================================================================

    async def _route_stdout(self, engine: EngineProcess) -> None:
        """Разбирать stdout движка: 5-tuple или сообщение для пира."""
        while True:
            try:
                line = await engine.stdout.readline()
            except (OSError, ValueError) as e:
                self._post_error(EngineIOError(f"reading natty stdout failed: {e}"))
                return

            if not line:
                self._post_error(EOFError("natty stdout closed"))
                return

            if is_result_record(line):
                try:
                    five_tuple = FiveTuple.from_json(line)
                except FiveTupleDecodeError as e:
                    logger.error(f"[NATTY] Bad 5-tuple from engine: {e}")
                    self._post_error(e)
                    return
                if not self._result.done():
                    self._result.set_result(five_tuple)
                return

            msg = line[:-1] if line.endswith(b"\n") else line
            logger.debug(f"[NATTY] -> peer: {len(msg)} bytes")
            try:
                result = self._send(msg)
                if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                    await result
            except Exception as e:
                error = SignalingError(f"send callback failed: {e}")
                error.__cause__ = e
                self._post_error(error)
                return

    async def _relay_stderr(self, engine: EngineProcess) -> None:
        """Копировать stderr движка в debug_out."""
        sink = self._debug_out
        decoder = None
        if isinstance(sink, io.TextIOBase):
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await engine.stderr.read(self._cfg.stderr_chunk_size)
                if not chunk:
                    break
                if sink is not None:
                    sink.write(decoder.decode(chunk) if decoder is not None else chunk)
            if decoder is not None:
                tail = decoder.decode(b"", final=True)
                if tail:
                    sink.write(tail)
        except OSError as e:
            self._post_error(EngineIOError(f"relaying natty stderr failed: {e}"))
            return
        except Exception as e:
            self._post_error(EngineIOError(f"debug output write failed: {e}"))
            return

        if sink is not None and hasattr(sink, "flush"):
            try:
                sink.flush()
            except Exception as e:
                self._post_error(EngineIOError(f"debug output flush failed: {e}"))
                return
        self._post_error(EOFError("natty stderr closed"))

    async def _wait_process(self, engine: EngineProcess, readers: Set[asyncio.Task]) -> None:
        """
        Дождаться выхода движка и сообщить код.

        Перед этим дочитываем stdout/stderr, чтобы вывод, записанный прямо
        перед выходом, не потерялся и обработался раньше кода выхода.
        """
        returncode = await engine.wait()
        await asyncio.wait(readers, timeout=self._cfg.drain_timeout)

        if returncode == 0:
            logger.debug(f"[NATTY] Engine pid={engine.pid} exited cleanly")
            self._post_error(None)
        else:
            self._post_error(EngineExitError(returncode))

    async def _pump_inbound(self, engine: EngineProcess) -> None:
        """Писать входящие сообщения в stdin движка строго по очереди."""
        while True:
            msg, done = await self._inbound.get()
            if done.done():
                continue
            try:
                engine.stdin.write(msg + b"\n")
                await engine.stdin.drain()
            except (OSError, RuntimeError) as e:
                _settle(done, EngineIOError(f"writing to natty stdin failed: {e}"))
                continue
            except asyncio.CancelledError:
                _settle(done, SessionStateError("natty session is finished"))
                raise
            logger.debug(f"[NATTY] <- peer: {len(msg)} bytes")
            _settle(done)


def _settle(done: "asyncio.Future[None]", exc: Optional[BaseException] = None) -> None:
    if done.done():
        return
    if exc is None:
        done.set_result(None)
    else:
        done.set_exception(exc)
