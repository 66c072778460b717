"""Tests for the UDP responder."""

import asyncio
import errno
import logging
import socket
import struct
from ipaddress import IPv4Address

import dns.message
import dns.rcode
import pytest

from dns_responder import config
from dns_responder.enums import RCode
from dns_responder.policy import PolicyResult, StaticAnswerPolicy
from dns_responder.responder import DNSResponder, ServerState, create_responder
from dns_responder.types import ARecord

EXAMPLE_QUESTION = b"\x07example\x03com\x00" + b"\x00\x01\x00\x01"
MX_QUESTION = b"\x07example\x03com\x00" + b"\x00\x0f\x00\x01"


def make_query(msg_id=0x1234, question=EXAMPLE_QUESTION, flags=0x0100):
    return struct.pack("!HHHHHH", msg_id, flags, 1, 0, 0, 0) + question


def make_responder(**kwargs):
    return DNSResponder(StaticAnswerPolicy("192.0.2.53"), host="127.0.0.1", port=0, **kwargs)


async def send_and_receive(address, *payloads, timeout=2.0):
    """Send datagrams from one client socket and return the first reply."""
    loop = asyncio.get_running_loop()
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.setblocking(False)
        for payload in payloads:
            await loop.sock_sendto(client, payload, address)
        return await asyncio.wait_for(loop.sock_recv(client, 512), timeout)


def test_process_example_query():
    """Test a valid A query produces one compressed answer."""
    reply = make_responder().process(make_query())

    msg_id, flags, qd, an, ns, ar = struct.unpack("!HHHHHH", reply[:12])
    assert msg_id == 0x1234
    assert flags & 0x8000
    assert flags & 0x000F == RCode.NOERROR
    assert (qd, an, ns, ar) == (1, 1, 0, 0)
    assert reply[29:31] == b"\xc0\x0c"
    assert reply[-4:] == bytes([192, 0, 2, 53])


def test_process_unanswered_query():
    """Test a query without answers gets the fallback RCODE."""
    reply = make_responder().process(make_query(question=MX_QUESTION))

    _, flags, _, an, _, _ = struct.unpack("!HHHHHH", reply[:12])
    assert flags & 0x000F == RCode.NOTZONE
    assert an == 0
    assert len(reply) == 29


def test_process_drops_malformed_datagram(caplog):
    """Test undecodable datagrams produce no reply and are logged."""
    with caplog.at_level(logging.WARNING, logger="dns_responder.responder"):
        assert make_responder().process(b"\x12\x34\x81\x00", peer=("192.0.2.1", 5353)) is None

    assert "192.0.2.1" in caplog.text
    assert "shorter than the 12 byte header" in caplog.text


@pytest.mark.parametrize("qname", [b"\x03a.b\x03com\x00", b"\x04com.\x00"])
def test_process_drops_name_with_dotted_label(qname):
    """Test a question whose label contains a '.' byte gets no reply."""
    data = make_query(question=qname + b"\x00\x01\x00\x01")
    assert make_responder().process(data) is None


def test_process_drops_unencodable_response(caplog):
    """Test an encoding failure drops the reply instead of raising."""

    class LongNamePolicy:
        authoritative = False
        recursion_available = False

        def produce(self, query):
            record = ARecord(name="a" * 64 + ".example.com", address=IPv4Address("192.0.2.1"))
            return PolicyResult(answers=(record,), fallback_rcode=RCode.NOTZONE)

    responder = DNSResponder(LongNamePolicy(), host="127.0.0.1", port=0)
    with caplog.at_level(logging.ERROR, logger="dns_responder.responder"):
        assert responder.process(make_query()) is None
    assert "Could not encode" in caplog.text


@pytest.mark.asyncio
async def test_serves_queries_over_udp():
    """Test a query sent over UDP is answered and parses with dnspython."""
    responder = make_responder()
    await responder.start()
    try:
        assert responder.state == ServerState.LISTENING
        reply = await send_and_receive(responder.bound_address, make_query(msg_id=99))
    finally:
        await responder.stop()

    message = dns.message.from_wire(reply)
    assert message.id == 99
    assert message.rcode() == dns.rcode.NOERROR
    assert str(message.answer[0][0]) == "192.0.2.53"
    assert responder.state == ServerState.STOPPED


@pytest.mark.asyncio
async def test_malformed_datagram_is_not_answered():
    """Test the loop skips a bad datagram and keeps answering."""
    responder = make_responder()
    await responder.start()
    try:
        reply = await send_and_receive(
            responder.bound_address,
            make_query(msg_id=1, flags=0x8100),
            b"\x00\x01",
            make_query(msg_id=2),
        )
    finally:
        await responder.stop()

    assert struct.unpack("!H", reply[:2])[0] == 2


@pytest.mark.asyncio
async def test_replies_keep_query_order():
    """Test replies are sent in the order queries arrived."""
    responder = make_responder()
    await responder.start()
    loop = asyncio.get_running_loop()
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
            client.setblocking(False)
            for msg_id in range(1, 6):
                await loop.sock_sendto(client, make_query(msg_id=msg_id), responder.bound_address)
            ids = []
            for _ in range(5):
                reply = await asyncio.wait_for(loop.sock_recv(client, 512), 2.0)
                ids.append(struct.unpack("!H", reply[:2])[0])
    finally:
        await responder.stop()

    assert ids == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_processing_error_does_not_stop_loop(monkeypatch, caplog):
    """Test an unexpected exception while processing is logged and the loop continues."""
    responder = make_responder()
    original = responder.process
    calls = []

    def flaky_process(data, peer=None):
        calls.append(data)
        if len(calls) == 1:
            raise RuntimeError("policy exploded")
        return original(data, peer)

    monkeypatch.setattr(responder, "process", flaky_process)

    await responder.start()
    try:
        with caplog.at_level(logging.ERROR, logger="dns_responder.responder"):
            reply = await send_and_receive(responder.bound_address, make_query(msg_id=1), make_query(msg_id=2))
    finally:
        await responder.stop()

    assert struct.unpack("!H", reply[:2])[0] == 2
    assert "policy exploded" in caplog.text


@pytest.mark.asyncio
async def test_repeated_receive_error_logged_once(monkeypatch, caplog):
    """Test the same receive error in a row is logged once and the loop still answers."""
    responder = make_responder()
    original = responder._receive
    failures = []

    async def flaky_receive(loop):
        if len(failures) < 3:
            failures.append(errno.ECONNREFUSED)
            raise OSError(errno.ECONNREFUSED, "Connection refused")
        return await original(loop)

    monkeypatch.setattr(responder, "_receive", flaky_receive)

    await responder.start()
    try:
        with caplog.at_level(logging.ERROR, logger="dns_responder.responder"):
            reply = await send_and_receive(responder.bound_address, make_query(msg_id=7))
    finally:
        await responder.stop()

    assert struct.unpack("!H", reply[:2])[0] == 7
    assert len(failures) == 3
    receive_errors = [r for r in caplog.records if r.getMessage().startswith("Receive failed")]
    assert len(receive_errors) == 1


@pytest.mark.asyncio
async def test_unusable_socket_ends_loop(monkeypatch, caplog):
    """Test a receive error that cannot recover stops the responder instead of spinning."""
    responder = make_responder()
    calls = []

    async def broken_receive(loop):
        calls.append(loop)
        raise OSError(errno.EBADF, "Bad file descriptor")

    monkeypatch.setattr(responder, "_receive", broken_receive)

    with caplog.at_level(logging.ERROR, logger="dns_responder.responder"):
        await responder.start()
        await asyncio.wait_for(responder._task, 1.0)

    assert len(calls) == 1
    assert responder.state == ServerState.STOPPED
    assert responder._sock.fileno() == -1
    assert "socket is unusable" in caplog.text

    await asyncio.wait_for(responder.stop(), 1.0)
    assert responder.state == ServerState.STOPPED


@pytest.mark.asyncio
async def test_stop_interrupts_pending_receive():
    """Test stop returns promptly while the loop waits for a datagram."""
    responder = make_responder()
    await responder.start()
    await asyncio.sleep(0.05)

    await asyncio.wait_for(responder.stop(), 1.0)

    assert responder.state == ServerState.STOPPED
    assert responder._sock.fileno() == -1


@pytest.mark.asyncio
async def test_stop_before_loop_runs():
    """Test stopping right after start does not wait for a datagram."""
    responder = make_responder()
    await responder.start()
    await asyncio.wait_for(responder.stop(), 1.0)
    assert responder.state == ServerState.STOPPED


@pytest.mark.asyncio
async def test_stop_without_start():
    """Test stopping an idle responder just marks it stopped."""
    responder = make_responder()
    await responder.stop()
    assert responder.state == ServerState.STOPPED


@pytest.mark.asyncio
async def test_bind_failure_propagates():
    """Test a port already in use fails start with OSError."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as blocker:
        blocker.bind(("127.0.0.1", 0))
        port = blocker.getsockname()[1]

        responder = DNSResponder(StaticAnswerPolicy("192.0.2.53"), host="127.0.0.1", port=port)
        with pytest.raises(OSError):
            await responder.start()

    assert responder.state == ServerState.IDLE


@pytest.mark.asyncio
async def test_cannot_start_twice():
    """Test a responder only runs once."""
    responder = make_responder()
    await responder.start()
    try:
        with pytest.raises(RuntimeError):
            await responder.start()
    finally:
        await responder.stop()

    with pytest.raises(RuntimeError):
        await responder.start()


def test_create_responder_from_config(monkeypatch):
    """Test the responder is built from configuration."""
    monkeypatch.setattr(config, "DEFAULT_ANSWER_ADDRESS", "198.51.100.7")
    monkeypatch.setattr(config, "DEFAULT_FALLBACK_RCODE", "nxdomain")

    responder = create_responder(host="127.0.0.1", port=5300)

    assert responder.host == "127.0.0.1"
    assert responder.port == 5300
    assert responder.policy.address == IPv4Address("198.51.100.7")
    assert responder.policy.fallback_rcode == RCode.NXDOMAIN
    assert responder.state == ServerState.IDLE


def test_create_responder_defaults():
    """Test defaults bind the wildcard address on port 53."""
    responder = create_responder()
    assert responder.host == config.DEFAULT_LISTEN_HOST
    assert responder.port == config.DEFAULT_LISTEN_PORT


def test_create_responder_rejects_unknown_rcode(monkeypatch):
    """Test an unknown fallback RCODE name is a configuration error."""
    monkeypatch.setattr(config, "DEFAULT_FALLBACK_RCODE", "NOPE")
    with pytest.raises(ValueError):
        create_responder()
