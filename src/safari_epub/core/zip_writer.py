"""Uncompressed (store-only) ZIP archive writer."""

import struct
from dataclasses import dataclass

from safari_epub.core.naming import ensure_forward_slashes

LOCAL_HEADER_SIGNATURE = 0x04034B50
CENTRAL_HEADER_SIGNATURE = 0x02014B50
END_OF_CENTRAL_DIR_SIGNATURE = 0x06054B50
VERSION_NEEDED = 20

LOCAL_HEADER_SIZE = 30
CENTRAL_HEADER_SIZE = 46
END_RECORD_SIZE = 22


def _build_crc_table() -> list[int]:
    table = []
    for i in range(256):
        c = i
        for _ in range(8):
            c = 0xEDB88320 ^ (c >> 1) if c & 1 else c >> 1
        table.append(c)
    return table


CRC_TABLE = _build_crc_table()


def crc32(data: bytes) -> int:
    """Standard reflected CRC-32 (polynomial 0xEDB88320)."""
    crc = 0xFFFFFFFF
    for byte in data:
        crc = CRC_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


@dataclass
class ArchiveEntry:
    """A file in the archive."""

    path: str
    data: bytes
    crc: int
    offset: int = 0

    @property
    def name_bytes(self) -> bytes:
        return self.path.encode("utf-8")


class StoreZipWriter:
    """Build a ZIP byte stream with every entry stored verbatim.

    Entries are written in the order they were added. EPUB readers sniff the
    ``mimetype`` entry, so callers add it first.
    """

    def __init__(self):
        self.entries: list[ArchiveEntry] = []

    def add_file(self, path: str, data: bytes | str) -> ArchiveEntry:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError(f"File data for {path} must be bytes.")
        data = bytes(data)
        entry = ArchiveEntry(path=ensure_forward_slashes(path), data=data, crc=crc32(data))
        self.entries.append(entry)
        return entry

    def __len__(self) -> int:
        return len(self.entries)

    def generate(self) -> bytes:
        """Serialize local entries, central directory and end record."""
        out = bytearray()

        for entry in self.entries:
            entry.offset = len(out)
            name = entry.name_bytes
            out += struct.pack(
                "<IHHHHHIIIHH",
                LOCAL_HEADER_SIGNATURE,
                VERSION_NEEDED,
                0,  # flags
                0,  # method: store
                0,  # mod time
                0,  # mod date
                entry.crc,
                len(entry.data),
                len(entry.data),
                len(name),
                0,  # extra length
            )
            out += name
            out += entry.data

        central_offset = len(out)
        for entry in self.entries:
            name = entry.name_bytes
            out += struct.pack(
                "<IHHHHHHIIIHHHHHII",
                CENTRAL_HEADER_SIGNATURE,
                VERSION_NEEDED,  # version made by
                VERSION_NEEDED,
                0,
                0,
                0,
                0,
                entry.crc,
                len(entry.data),
                len(entry.data),
                len(name),
                0,  # extra length
                0,  # comment length
                0,  # disk number start
                0,  # internal attributes
                0,  # external attributes
                entry.offset,
            )
            out += name
        central_size = len(out) - central_offset

        out += struct.pack(
            "<IHHHHIIH",
            END_OF_CENTRAL_DIR_SIGNATURE,
            0,
            0,
            len(self.entries),
            len(self.entries),
            central_size,
            central_offset,
            0,
        )
        return bytes(out)
