"""Decoding of incoming DNS queries."""

import struct
from typing import Union

from dns_responder.enums import Opcode, RCode, RRClass, RRType
from dns_responder.errors import DecodeError
from dns_responder.names import decode_name
from dns_responder.types import DecodeFailure, FailureReason, Query, Question

HEADER_LENGTH = 12

# Flags, first octet
QR_MASK = 0x80
OPCODE_MASK = 0x78
AA_MASK = 0x04
TC_MASK = 0x02
RD_MASK = 0x01

# Flags, second octet
RA_MASK = 0x80
Z_MASK = 0x70
RCODE_MASK = 0x0F


def read_query(data: bytes) -> Union[Query, DecodeFailure]:
    """
    Decode a datagram into a query.

    Only a single well formed query is accepted: no response flags, no
    answer, authority or additional records, at least one question.

    Args:
        data: Raw datagram

    Returns:
        Query on success, DecodeFailure describing the first violation otherwise
    """
    try:
        return _read_query(data)
    except DecodeError as e:
        return DecodeFailure(reason=e.reason, error=str(e))
    except Exception as e:
        return DecodeFailure(
            reason=FailureReason.MALFORMED_MESSAGE,
            error=f"{FailureReason.MALFORMED_MESSAGE.value}: {e}",
            cause=e,
        )


def _fail(reason: FailureReason) -> DecodeError:
    return DecodeError(reason, reason.value)


def _read_query(data: bytes) -> Query:
    if len(data) < HEADER_LENGTH:
        raise _fail(FailureReason.TOO_SHORT)

    msg_id, qd_count, an_count, ns_count, ar_count = struct.unpack_from("!H2xHHHH", data)
    flags1, flags2 = data[2], data[3]

    if flags1 & QR_MASK:
        raise _fail(FailureReason.UNEXPECTED_RESPONSE)

    try:
        opcode = Opcode((flags1 & OPCODE_MASK) >> 3)
    except ValueError:
        raise _fail(FailureReason.INVALID_OPCODE) from None

    if flags1 & AA_MASK:
        raise _fail(FailureReason.UNEXPECTED_AA)
    if flags2 & RA_MASK:
        raise _fail(FailureReason.UNEXPECTED_RA)
    if flags2 & Z_MASK:
        raise _fail(FailureReason.NON_ZERO_RESERVED)
    if flags2 & RCODE_MASK:
        raise _fail(FailureReason.NON_ZERO_RCODE)
    if qd_count == 0:
        raise _fail(FailureReason.NO_QUESTIONS)
    if an_count or ns_count or ar_count:
        raise _fail(FailureReason.UNEXPECTED_EXTRA_SECTIONS)

    questions = []
    offset = HEADER_LENGTH
    for _ in range(qd_count):
        question, offset = _read_question(data, offset)
        questions.append(question)

    return Query(
        id=msg_id,
        opcode=opcode,
        tc=bool(flags1 & TC_MASK),
        rd=bool(flags1 & RD_MASK),
        questions=tuple(questions),
        rcode=RCode.NOERROR,
        qd_count=qd_count,
    )


def _read_question(data: bytes, offset: int) -> tuple[Question, int]:
    name, offset = decode_name(data, offset)
    if offset + 4 > len(data):
        raise _fail(FailureReason.TRUNCATED)

    qtype, qclass = struct.unpack_from("!HH", data, offset)
    try:
        qtype = RRType(qtype)
    except ValueError:
        raise _fail(FailureReason.INVALID_TYPE) from None
    try:
        qclass = RRClass(qclass)
    except ValueError:
        raise _fail(FailureReason.INVALID_CLASS) from None

    return Question(name=name, qtype=qtype, qclass=qclass), offset + 4
