"""
Tagged operation results.

Every client-facing operation returns exactly one of

* ``Ok``       -- the remote system confirmed the operation,
* ``Deferred`` -- the operation was queued for the next sync pass,
* ``Err``      -- the operation failed with a classified ``ErrorKind``.

``success`` is true for both ``Ok`` and ``Deferred``; only ``Deferred``
is ``offline``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union


class ErrorKind(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"  # bad input, no I/O performed
    STATE_ERROR = "STATE_ERROR"  # illegal for the trip's current status
    NETWORK_ERROR = "NETWORK_ERROR"  # connectivity; absorbed by the queue
    REMOTE_ERROR = "REMOTE_ERROR"  # business failure reported by the backend


@dataclass(frozen=True)
class Ok:
    data: Any = None
    from_cache: bool = False
    message: Optional[str] = None

    success: ClassVar[bool] = True
    offline: ClassVar[bool] = False


@dataclass(frozen=True)
class Deferred:
    operation_id: str
    data: Any = None
    message: Optional[str] = None

    success: ClassVar[bool] = True
    offline: ClassVar[bool] = True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    details: tuple[str, ...] = ()

    success: ClassVar[bool] = False
    offline: ClassVar[bool] = False

    @property
    def is_network(self) -> bool:
        return self.kind is ErrorKind.NETWORK_ERROR


Result = Union[Ok, Deferred, Err]
