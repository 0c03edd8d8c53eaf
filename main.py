#!/usr/bin/env python3
"""
Natty Session Runner
====================

[CLI] Запускает одну сессию natty и использует собственные stdin/stdout
как сигнальный транспорт:
- каждая строка stdin передается движку через receive()
- каждое исходящее сообщение движка печатается в stdout
- итоговый 5-tuple печатается в stdout одной JSON-строкой

Логи и отладочный вывод движка идут в stderr.

Использование:
    python main.py [--offer] [--binary PATH] [--debug] [--timeout SEC]

Примеры:
    # Два natty на одной машине, сигналинг через именованные каналы
    mkfifo a2b b2a
    python main.py --offer < b2a > a2b &
    python main.py < a2b > b2a
"""

import argparse
import asyncio
import json
import logging
import sys
import threading
from contextlib import suppress
from typing import Callable, List, Optional

from dotenv import load_dotenv

# Загрузка переменных окружения из .env файла до чтения config
load_dotenv()

from config import config
from core.logger import EngineLogWriter
from core.nat import (
    EngineBinary,
    EngineIOError,
    FiveTuple,
    Natty,
    NattyError,
    SessionStateError,
)

logger = logging.getLogger("natty")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run one natty NAT traversal session over stdio signaling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Offerer
  python main.py --offer --binary ./natty

  # Answerer with engine debug output and a 60s limit
  python main.py --debug --timeout 60
""",
    )
    parser.add_argument(
        "--offer",
        action="store_true",
        help="Initiate the ICE session (default: answer)",
    )
    parser.add_argument(
        "--binary", "-b",
        type=str,
        default=config.natty.binary_path,
        help="Path to the natty engine (default: $NATTY_BINARY or PATH lookup)",
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        default=config.natty.debug,
        help="Run the engine with -debug and log its stderr",
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=config.natty.default_timeout,
        help="Give up after SEC seconds (default: wait forever)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def resolve_binary(path: Optional[str]) -> EngineBinary:
    """Бинарник из аргумента или из конфигурации."""
    if path:
        return EngineBinary.from_path(path)
    return EngineBinary.locate(config.natty)


def format_result(five_tuple: FiveTuple) -> str:
    return json.dumps(five_tuple.to_dict(), sort_keys=True)


def write_line(stream, msg: bytes) -> None:
    stream.write(msg + b"\n")
    stream.flush()


def start_reader(readline: Callable[[], bytes], lines: "asyncio.Queue[bytes]") -> threading.Thread:
    """
    Читать блокирующий readline() в daemon-потоке и складывать строки в очередь.

    Daemon-поток не мешает завершению процесса, пока stdin открыт.
    """
    loop = asyncio.get_running_loop()

    def _run() -> None:
        while True:
            line = readline()
            try:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            except RuntimeError:
                # Event loop уже закрыт
                return
            if not line:
                return

    thread = threading.Thread(target=_run, name="natty-signaling", daemon=True)
    thread.start()
    return thread


async def forward_signaling(natty: Natty, lines: "asyncio.Queue[bytes]") -> None:
    """Передавать строки из очереди в natty до EOF (пустой строки)."""
    while True:
        line = await lines.get()
        if not line:
            logger.debug("[SIGNAL] Signaling input closed")
            return
        msg = line.rstrip(b"\r\n")
        if not msg:
            continue
        try:
            await natty.receive(msg)
        except SessionStateError:
            return
        except EngineIOError as e:
            logger.warning(f"[SIGNAL] Message dropped: {e}")


async def run_session(args: argparse.Namespace) -> int:
    """Запустить сессию; вернуть код выхода процесса."""
    try:
        binary = resolve_binary(args.binary)
    except NattyError as e:
        logger.error(f"[MAIN] {e}")
        return 1

    stdout = sys.stdout.buffer
    debug_out = EngineLogWriter(logging.getLogger("natty.engine")) if args.debug else None

    natty = Natty(lambda msg: write_line(stdout, msg), debug_out, binary=binary)
    lines: "asyncio.Queue[bytes]" = asyncio.Queue()
    start_reader(sys.stdin.buffer.readline, lines)
    signaling = asyncio.create_task(forward_signaling(natty, lines))

    try:
        if args.offer:
            five_tuple = await natty.offer(timeout=args.timeout)
        else:
            five_tuple = await natty.answer(timeout=args.timeout)
    except NattyError as e:
        logger.error(f"[MAIN] NAT traversal failed: {e}")
        if debug_out is not None:
            for line in debug_out.tail(10):
                logger.error(f"[MAIN] engine: {line}")
        return 1
    finally:
        signaling.cancel()
        with suppress(asyncio.CancelledError):
            await signaling

    write_line(stdout, format_result(five_tuple).encode())
    return 0


def cli(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    try:
        return asyncio.run(run_session(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(cli())
