"""Answer selection for decoded queries."""

import ipaddress
from dataclasses import dataclass
from typing import Protocol, Union

from dns_responder.enums import RCode, RRClass, RRType
from dns_responder.names import validate_domain
from dns_responder.types import ARecord, PtrRecord, Query, ResourceRecord, Response

MAX_TTL = 0xFFFFFFFF


@dataclass(frozen=True)
class PolicyResult:
    """Answers for a query, and the RCODE to use when there are none."""

    answers: tuple[ResourceRecord, ...]
    fallback_rcode: RCode


class AnswerPolicy(Protocol):
    """Maps a query to answer records."""

    authoritative: bool
    recursion_available: bool

    def produce(self, query: Query) -> PolicyResult:
        ...


class StaticAnswerPolicy:
    """Answers every IN/A question with one address and every IN/PTR with one name."""

    def __init__(
        self,
        address: Union[str, ipaddress.IPv4Address],
        ptr_target: str = "localhost",
        ttl: int = 0,
        fallback_rcode: RCode = RCode.NOTZONE,
        authoritative: bool = False,
        recursion_available: bool = True,
    ):
        self.address = ipaddress.IPv4Address(address)

        is_valid, error = validate_domain(ptr_target)
        if not is_valid:
            raise ValueError(f"Invalid PTR target: {error}")
        self.ptr_target = ptr_target

        if not 0 <= ttl <= MAX_TTL:
            raise ValueError(f"TTL must be between 0 and {MAX_TTL}, got {ttl}")
        self.ttl = ttl

        self.fallback_rcode = RCode(fallback_rcode)
        self.authoritative = authoritative
        self.recursion_available = recursion_available

    def produce(self, query: Query) -> PolicyResult:
        answers: list[ResourceRecord] = []

        for question in query.questions:
            if question.qclass != RRClass.IN:
                continue
            if question.qtype == RRType.A:
                answers.append(ARecord(name=question.name, address=self.address, ttl=self.ttl))
            elif question.qtype == RRType.PTR:
                answers.append(PtrRecord(name=question.name, target=self.ptr_target, ttl=self.ttl))

        return PolicyResult(answers=tuple(answers), fallback_rcode=self.fallback_rcode)


def build_response(query: Query, policy: AnswerPolicy) -> Response:
    """Build the response for ``query``.

    Without answers the response carries the policy's fallback RCODE
    instead of NOERROR.
    """
    result = policy.produce(query)

    if not result.answers:
        return Response.from_query(
            query,
            aa=policy.authoritative,
            ra=policy.recursion_available,
            rcode=result.fallback_rcode,
        )

    return Response.from_query(
        query,
        answers=result.answers,
        aa=policy.authoritative,
        ra=policy.recursion_available,
    )
