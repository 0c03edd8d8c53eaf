"""
Five-Tuple - Результат NAT traversal
====================================

[RESULT] Движок natty сообщает об успехе одной JSON-строкой в stdout:

    {"5-tuple":true,"proto":"udp","local":"10.0.0.1:5000","remote":"203.0.113.9:6000"}

[FIELDS]
- proto: "udp" или "tcp"
- local: локальный endpoint (host:port)
- remote: удаленный endpoint (host:port)

Имена полей сравниваются без учета регистра.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple, Union

from .errors import FiveTupleDecodeError


# Маркер строки с результатом
FIVE_TUPLE_MARKER = "5-tuple"


class TransportProtocol(Enum):
    """Транспорт выбранной пары."""
    UDP = "udp"
    TCP = "tcp"


def split_endpoint(endpoint: str) -> Tuple[str, int]:
    """
    Разобрать "host:port" в кортеж.

    IPv6 адреса ожидаются в виде "[addr]:port".
    """
    if endpoint.startswith("["):
        host, sep, port_str = endpoint[1:].partition("]:")
    else:
        host, sep, port_str = endpoint.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid endpoint: {endpoint!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in endpoint: {endpoint!r}") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range in endpoint: {endpoint!r}")
    return (host, port)


@dataclass(frozen=True)
class FiveTuple:
    """
    Согласованный путь соединения.

    [IMMUTABLE] Создается один раз на успешную сессию.
    """

    proto: TransportProtocol
    local: str
    remote: str

    @property
    def local_address(self) -> Tuple[str, int]:
        return split_endpoint(self.local)

    @property
    def remote_address(self) -> Tuple[str, int]:
        return split_endpoint(self.remote)

    def to_dict(self) -> Dict[str, str]:
        return {
            "proto": self.proto.value,
            "local": self.local,
            "remote": self.remote,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FiveTuple":
        """Создать из словаря (ключи без учета регистра)."""
        if not isinstance(data, dict):
            raise FiveTupleDecodeError(
                f"5-tuple must be a JSON object, got {type(data).__name__}"
            )

        fields = {str(key).lower(): value for key, value in data.items()}

        proto_raw = fields.get("proto")
        if not isinstance(proto_raw, str):
            raise FiveTupleDecodeError(f"Missing or invalid proto: {proto_raw!r}")
        try:
            proto = TransportProtocol(proto_raw.lower())
        except ValueError:
            raise FiveTupleDecodeError(f"Unknown proto: {proto_raw!r}") from None

        endpoints = []
        for name in ("local", "remote"):
            value = fields.get(name)
            if not isinstance(value, str):
                raise FiveTupleDecodeError(f"Missing or invalid {name}: {value!r}")
            endpoints.append(value)

        return cls(proto=proto, local=endpoints[0], remote=endpoints[1])

    @classmethod
    def from_json(cls, record: Union[bytes, str]) -> "FiveTuple":
        """
        Декодировать строку-результат движка.

        Raises:
            FiveTupleDecodeError: если запись не является валидным 5-tuple
        """
        if isinstance(record, bytes):
            try:
                record = record.decode("utf-8")
            except UnicodeDecodeError as e:
                raise FiveTupleDecodeError(f"5-tuple is not UTF-8: {e}") from e

        try:
            data = json.loads(record)
        except json.JSONDecodeError as e:
            raise FiveTupleDecodeError(f"Malformed 5-tuple: {e}", record=record) from e

        try:
            return cls.from_dict(data)
        except FiveTupleDecodeError as e:
            e.record = record
            raise


def is_result_record(record: bytes) -> bool:
    """Содержит ли строка stdout маркер результата."""
    return FIVE_TUPLE_MARKER.encode() in record
