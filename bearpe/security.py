"""The security (certificate) data directory of a PE image."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional, Sequence, Tuple

from .buffer import BufferAccessError
from .executable import AddrType, DataType, Executable
from .wrappers import NodeWrapper

_CERT_HEADER_SIZE = 8
# Length minus this many bytes is what must be readable after the header
# for the declared certificate length to be accepted.
_CHECKED_HEADER_LEN = 10


class CertificateType(IntEnum):
    """Values of the wCertificateType field of a certificate entry."""

    X509 = 0x0001
    PKCS_SIGNED_DATA = 0x0002
    RESERVED_1 = 0x0003
    TS_STACK_SIGNED = 0x0004
    PKCS1_SIGN = 0x0009


_TYPE_NAMES = {
    CertificateType.X509: "X.509 certificate",
    CertificateType.PKCS_SIGNED_DATA: "PKCS Signed Data",
    CertificateType.RESERVED_1: "Reserved",
    CertificateType.PKCS1_SIGN: "PKCS1 Module Sign Fields",
}


def translate_type(cert_type: int) -> str:
    """Description of a certificate type, or an empty string if it is not known."""
    return _TYPE_NAMES.get(cert_type, "")


class SecurityDirectory(NodeWrapper):
    """The certificate table entry found at a raw file offset."""

    CERT_LEN = 0
    REVISION = 1
    TYPE = 2
    CERT_CONTENT = 3

    name = "Security"

    def __init__(self, exe: Executable, dir_address: Optional[int]) -> None:
        super().__init__(exe)
        self.dir_address = dir_address
        self._size_ok = False
        self.wrap()

    def offset(self) -> Optional[int]:
        if self.dir_address is None:
            return None
        try:
            self.exe.get_content_at(self.dir_address, AddrType.RAW, _CERT_HEADER_SIZE)
        except BufferAccessError:
            return None
        return self.dir_address

    def wrap(self) -> bool:
        """Check whether the declared certificate length fits in the file."""
        self._size_ok = False
        start = self.offset()
        if start is None:
            return False
        length = self.exe.buffer.get_num_value(start, 4)
        cert_size = length - _CHECKED_HEADER_LEN
        try:
            self.exe.get_content_at(start + _CERT_HEADER_SIZE, AddrType.RAW, cert_size)
        except BufferAccessError:
            return False
        self._size_ok = True
        return True

    def size(self) -> int:
        """Declared length if it fits in the file, else the header size; 0 if absent."""
        start = self.offset()
        if start is None:
            return 0
        if self._size_ok:
            return self.exe.buffer.get_num_value(start, 4)
        return _CERT_HEADER_SIZE

    def _layout(self) -> Sequence[Tuple[str, int]]:
        content_size = max(self.size() - _CERT_HEADER_SIZE, 0)
        return (
            ("Length", 4),
            ("Revision", 2),
            ("Type", 2),
            ("Cert. Content", content_size),
        )

    def field_name(self, field_id: int) -> str:
        try:
            return super().field_name(field_id)
        except IndexError:
            return self.name

    def data_type(self, field_id: int) -> DataType:
        if field_id == self.CERT_CONTENT:
            return DataType.COMPLEX
        return DataType.INT

    def translate_field_content(self, field_id: int) -> str:
        if field_id != self.TYPE or self.offset() is None:
            return ""
        return translate_type(self.num_value(self.TYPE))