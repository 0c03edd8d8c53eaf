"""
NAT Traversal Module
====================

Обертка над внешней утилитой NAT traversal natty:
- Engine: подготовка бинарника и запуск процесса с тремя pipe
- Natty: сессия offerer/answerer, обмен сигнальными сообщениями
- FiveTuple: итог traversal (протокол, локальный и удаленный endpoint)

[ROLES]
- Offerer: инициирует ICE сессию (natty -offer)
- Answerer: принимает offer (natty)

[SIGNALING] Сообщения (SDP, ICE candidates) между двумя natty переносит
приложение: Natty вызывает send() для исходящих и принимает входящие
через receive().
"""

from .errors import (
    NattyError,
    EngineSetupError,
    FiveTupleDecodeError,
    EngineIOError,
    EngineExitError,
    SignalingError,
    SessionStateError,
    NattyTimeoutError,
)
from .five_tuple import FiveTuple, TransportProtocol, FIVE_TUPLE_MARKER
from .engine import EngineBinary, EngineProcess, build_params
from .natty import Natty, NattyState

__all__ = [
    # Session
    "Natty",
    "NattyState",
    # Result
    "FiveTuple",
    "TransportProtocol",
    "FIVE_TUPLE_MARKER",
    # Engine
    "EngineBinary",
    "EngineProcess",
    "build_params",
    # Errors
    "NattyError",
    "EngineSetupError",
    "FiveTupleDecodeError",
    "EngineIOError",
    "EngineExitError",
    "SignalingError",
    "SessionStateError",
    "NattyTimeoutError",
]
