"""Message and response type definitions for the DNS responder."""

from dataclasses import dataclass
from enum import Enum
from ipaddress import IPv4Address
from typing import ClassVar, Optional, Union

from dns_responder.enums import Opcode, RCode, RRClass, RRType


@dataclass(frozen=True)
class Question:
    """A single entry of the question section."""

    name: str
    qtype: RRType
    qclass: RRClass


@dataclass(frozen=True)
class ARecord:
    """Host address record."""

    rtype: ClassVar[RRType] = RRType.A

    name: str
    address: IPv4Address
    ttl: int = 0
    rclass: RRClass = RRClass.IN


@dataclass(frozen=True)
class PtrRecord:
    """Domain name pointer record."""

    rtype: ClassVar[RRType] = RRType.PTR

    name: str
    target: str
    ttl: int = 0
    rclass: RRClass = RRClass.IN


ResourceRecord = Union[ARecord, PtrRecord]


@dataclass(frozen=True)
class Query:
    """A decoded DNS query.

    Counts are kept as read from the header; ``questions`` always holds
    exactly ``qd_count`` entries.
    """

    id: int
    opcode: Opcode
    tc: bool
    rd: bool
    questions: tuple[Question, ...]
    qr: bool = False
    aa: bool = False
    ra: bool = False
    z: int = 0
    rcode: RCode = RCode.NOERROR
    qd_count: int = 1
    an_count: int = 0
    ns_count: int = 0
    ar_count: int = 0


@dataclass(frozen=True)
class Response:
    """A DNS response ready to be written to the wire."""

    id: int
    opcode: Opcode
    aa: bool
    tc: bool
    rd: bool
    ra: bool
    rcode: RCode
    questions: tuple[Question, ...]
    answers: tuple[ResourceRecord, ...] = ()
    qr: bool = True
    z: int = 0

    @property
    def qd_count(self) -> int:
        return len(self.questions)

    @property
    def an_count(self) -> int:
        return len(self.answers)

    @property
    def ns_count(self) -> int:
        return 0

    @property
    def ar_count(self) -> int:
        return 0

    @classmethod
    def from_query(
        cls,
        query: Query,
        answers: tuple[ResourceRecord, ...] = (),
        aa: bool = False,
        ra: bool = False,
        rcode: RCode = RCode.NOERROR,
    ) -> "Response":
        """Build the response for a query, echoing ID, opcode, RD and questions."""
        return cls(
            id=query.id,
            opcode=query.opcode,
            aa=aa,
            tc=False,
            rd=query.rd,
            ra=ra,
            rcode=rcode,
            questions=query.questions,
            answers=tuple(answers),
        )


class FailureReason(Enum):
    """Why an incoming datagram was rejected."""

    TOO_SHORT = "Message is shorter than the 12 byte header"
    UNEXPECTED_RESPONSE = "QR flag is set"
    INVALID_OPCODE = "Opcode is not defined"
    UNEXPECTED_AA = "AA flag is set"
    UNEXPECTED_RA = "RA flag is set"
    NON_ZERO_RESERVED = "Reserved Z bits are not zero"
    NON_ZERO_RCODE = "RCODE is not zero"
    NO_QUESTIONS = "QDCOUNT is zero"
    UNEXPECTED_EXTRA_SECTIONS = "Answer, authority or additional section is not empty"
    TRUNCATED = "Message ends before the question section does"
    INVALID_TYPE = "Question type is not defined"
    INVALID_CLASS = "Question class is not defined"
    MALFORMED_MESSAGE = "Message could not be decoded"


@dataclass
class DecodeFailure:
    """Result of reading a datagram that is not an acceptable query."""

    reason: FailureReason
    error: str
    cause: Optional[BaseException] = None
    success: bool = False


# Tool responses


@dataclass
class DNSRecord:
    """A single answer record as reported by the inspection tools."""

    type: str
    value: str
    ttl: int


@dataclass
class SimulationResponse:
    """Response for a query simulated through the responder pipeline."""

    domain: str
    record_type: str
    rcode: str
    authoritative: bool
    recursion_available: bool
    records: list[DNSRecord]
    success: bool = True


@dataclass
class ErrorResponse:
    """Response for a failed tool call."""

    error: str
    domain: Optional[str] = None
    reason: Optional[str] = None
    success: bool = False
