"""Abstract byte transport shared by USB and TCP links."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto


class TransportKind(Enum):
    """The kind of link a transport runs over."""

    USB_BULK = auto()
    TCP_STREAM = auto()


class ByteTransport(ABC):
    """A bidirectional byte link to a device."""

    @abstractmethod
    def kind(self) -> TransportKind:
        """Return the kind of link."""

    @abstractmethod
    def connected(self) -> bool:
        """Return True while the link is usable."""

    @property
    @abstractmethod
    def timeout_ms(self) -> int:
        """Timeout applied to each transfer, in milliseconds."""

    @timeout_ms.setter
    @abstractmethod
    def timeout_ms(self, ms: int) -> None:
        """Set the transfer timeout in milliseconds."""

    @abstractmethod
    def send(self, data: bytes, retries: int = 8) -> int:
        """Send ``data`` and return the number of bytes written."""

    @abstractmethod
    def recv(self, size: int, retries: int = 8) -> bytes:
        """Receive up to ``size`` bytes."""

    @abstractmethod
    def recv_zlp(self, retries: int = 0) -> int:
        """Receive a zero-length packet; a no-op on stream links."""