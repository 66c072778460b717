"""Encoding of DNS responses."""

import struct
from typing import Callable

from dns_responder.enums import RRType
from dns_responder.errors import EncodingError
from dns_responder.names import encode_name
from dns_responder.types import ARecord, PtrRecord, ResourceRecord, Response

MAX_HEADER_RCODE = 0x0F


class MessageWriter:
    """Accumulates one message and its name compression table.

    A writer is used for exactly one message; pointers recorded in
    ``offsets`` are only meaningful within ``buffer``.
    """

    def __init__(self):
        self.buffer = bytearray()
        self.offsets: dict[str, int] = {}

    def write_name(self, name: str) -> None:
        self.buffer += encode_name(name, self.offsets, len(self.buffer))

    def write(self, fmt: str, *values) -> None:
        try:
            self.buffer += struct.pack(fmt, *values)
        except struct.error as e:
            raise EncodingError(f"Field out of range: {e}") from e

    def getvalue(self) -> bytes:
        return bytes(self.buffer)


def _write_a_rdata(writer: MessageWriter, record: ARecord) -> None:
    writer.buffer += record.address.packed


def _write_ptr_rdata(writer: MessageWriter, record: PtrRecord) -> None:
    writer.write_name(record.target)


RDATA_WRITERS: dict[RRType, Callable[[MessageWriter, ResourceRecord], None]] = {
    RRType.A: _write_a_rdata,
    RRType.PTR: _write_ptr_rdata,
}


def _header_flags(response: Response) -> int:
    if response.rcode > MAX_HEADER_RCODE:
        raise EncodingError(f"RCODE {response.rcode.name} does not fit in the header without EDNS0")

    return (
        (response.qr << 15)
        | (response.opcode << 11)
        | (response.aa << 10)
        | (response.tc << 9)
        | (response.rd << 8)
        | (response.ra << 7)
        | (response.z << 4)
        | response.rcode
    )


def _write_record(writer: MessageWriter, record: ResourceRecord) -> None:
    rdata_writer = RDATA_WRITERS.get(record.rtype)
    if rdata_writer is None:
        raise EncodingError(f"No RDATA encoding for record type {record.rtype.name}")

    writer.write_name(record.name)
    writer.write("!HHI", record.rtype, record.rclass, record.ttl)

    # RDLENGTH is patched once the RDATA size is known
    length_offset = len(writer.buffer)
    writer.write("!H", 0)
    rdata_writer(writer, record)
    rdlength = len(writer.buffer) - length_offset - 2
    struct.pack_into("!H", writer.buffer, length_offset, rdlength)


def write_response(response: Response) -> bytes:
    """
    Encode a response to wire format.

    Names in the question and answer sections share one compression table,
    so answer owner names point back into the question section.

    Raises:
        EncodingError: a name, RCODE or record cannot be represented
    """
    writer = MessageWriter()
    writer.write(
        "!HHHHHH",
        response.id,
        _header_flags(response),
        response.qd_count,
        response.an_count,
        response.ns_count,
        response.ar_count,
    )

    for question in response.questions:
        writer.write_name(question.name)
        writer.write("!HH", question.qtype, question.qclass)

    for record in response.answers:
        _write_record(writer, record)

    return writer.getvalue()
