"""
Core Module
===========
Содержит компоненты оркестрации NAT traversal:
- nat: сессия natty, процесс движка, 5-tuple
- logger: sink для отладочного вывода движка
"""

from .logger import EngineLogWriter
from .nat import Natty, NattyState, FiveTuple, TransportProtocol, EngineBinary, NattyError

__all__ = [
    "Natty",
    "NattyState",
    "FiveTuple",
    "TransportProtocol",
    "EngineBinary",
    "NattyError",
    "EngineLogWriter",
]
