"""UDP responder driving the codec and the answer policy."""

import asyncio
import contextlib
import errno
import logging
import signal
import socket
from enum import Enum
from typing import Optional

from dns_responder import config
from dns_responder.enums import RCode
from dns_responder.errors import EncodingError
from dns_responder.policy import AnswerPolicy, StaticAnswerPolicy, build_response
from dns_responder.reader import read_query
from dns_responder.types import DecodeFailure
from dns_responder.writer import write_response

logger = logging.getLogger(__name__)

# Largest DNS message over UDP without EDNS0
MAX_UDP_MESSAGE_SIZE = 512

# Receive errors after which the socket cannot deliver datagrams again
FATAL_RECEIVE_ERRNOS = frozenset({errno.EBADF, errno.ENOTSOCK})

# Pause before retrying a receive that failed the same way twice in a row
RECEIVE_RETRY_DELAY = 0.05


class ServerState(str, Enum):
    IDLE = "idle"
    BOUND = "bound"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


class DNSResponder:
    """Answers DNS queries on one UDP socket.

    Datagrams are handled strictly one at a time by a single task, which
    owns the receive buffer. A responder runs once: after ``stop()`` it
    cannot be restarted.
    """

    def __init__(
        self,
        policy: AnswerPolicy,
        host: str = "0.0.0.0",
        port: int = 53,
        buffer_size: int = MAX_UDP_MESSAGE_SIZE,
    ):
        self.policy = policy
        self.host = host
        self.port = port
        self.state = ServerState.IDLE
        self.bound_address: Optional[tuple[str, int]] = None
        self._buffer = bytearray(buffer_size)
        self._sock: Optional[socket.socket] = None
        self._task: Optional[asyncio.Task] = None
        self._pending_receive: Optional[asyncio.Future] = None
        self._stop_requested = False

    def process(self, data: bytes, peer=None) -> Optional[bytes]:
        """
        Run one datagram through decode, answer selection and encode.

        Returns:
            The reply to send, or None when the datagram must be dropped
        """
        query = read_query(data)
        if isinstance(query, DecodeFailure):
            logger.warning(f"Dropping datagram from {peer}: {query.error}")
            return None

        response = build_response(query, self.policy)
        try:
            reply = write_response(response)
        except EncodingError as e:
            logger.error(f"Could not encode response {query.id} for {peer}: {e}")
            return None

        logger.debug(
            f"Query {query.id} from {peer}: {len(query.questions)} question(s), "
            f"{response.an_count} answer(s), {response.rcode.name}, {len(reply)} bytes"
        )
        return reply

    async def start(self) -> None:
        """Bind the socket and start listening.

        Raises:
            OSError: the socket cannot be created or bound
            RuntimeError: the responder was already started
        """
        if self.state != ServerState.IDLE:
            raise RuntimeError(f"Responder cannot start from state '{self.state.value}'")

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.setblocking(False)
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise

        self._sock = sock
        self.bound_address = sock.getsockname()[:2]
        self.state = ServerState.BOUND
        logger.info(f"Bound UDP socket on {self.bound_address[0]}:{self.bound_address[1]}")

        self._task = asyncio.create_task(self._listen())
        self.state = ServerState.LISTENING

    async def stop(self) -> None:
        """Stop listening and close the socket.

        A pending receive is interrupted; a datagram already received is
        answered before the socket closes.
        """
        if self._task is None:
            self.state = ServerState.STOPPED
            return

        if self.state == ServerState.LISTENING:
            self.state = ServerState.DRAINING
            logger.info("Draining responder")

        self._stop_requested = True
        if self._pending_receive is not None:
            self._pending_receive.cancel()
        await self._task

    async def _receive(self, loop: asyncio.AbstractEventLoop) -> tuple[int, tuple]:
        self._pending_receive = asyncio.ensure_future(loop.sock_recvfrom_into(self._sock, self._buffer))
        try:
            return await self._pending_receive
        finally:
            self._pending_receive = None

    async def _listen(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info("Starting to listen...")
        last_receive_errno = None

        try:
            while not self._stop_requested:
                try:
                    nbytes, peer = await self._receive(loop)
                except asyncio.CancelledError:
                    if self._stop_requested:
                        break
                    raise
                except OSError as e:
                    if e.errno in FATAL_RECEIVE_ERRNOS:
                        logger.error(f"Receive failed, socket is unusable: {e}")
                        break
                    if e.errno == last_receive_errno:
                        logger.debug(f"Receive failed again: {e}")
                        await asyncio.sleep(RECEIVE_RETRY_DELAY)
                    else:
                        logger.error(f"Receive failed: {e}")
                        last_receive_errno = e.errno
                    continue

                last_receive_errno = None
                try:
                    reply = self.process(bytes(memoryview(self._buffer)[:nbytes]), peer)
                except Exception:
                    logger.exception(f"An exception occurred while processing the DNS request from {peer}")
                    continue

                if reply is None:
                    continue

                try:
                    await loop.sock_sendto(self._sock, reply, peer)
                except OSError as e:
                    logger.error(f"Failed to send response to {peer}: {e}")
        finally:
            self._sock.close()
            self.state = ServerState.STOPPED
            logger.info("Responder stopped")


def create_responder(
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> DNSResponder:
    """Create a responder with the static answer policy from configuration.

    Raises:
        ValueError: the configuration is invalid
    """
    try:
        fallback_rcode = RCode[config.DEFAULT_FALLBACK_RCODE.upper()]
    except KeyError:
        raise ValueError(f"Unknown fallback RCODE: {config.DEFAULT_FALLBACK_RCODE}") from None

    policy = StaticAnswerPolicy(
        address=config.DEFAULT_ANSWER_ADDRESS,
        ptr_target=config.DEFAULT_PTR_TARGET,
        ttl=config.DEFAULT_ANSWER_TTL,
        fallback_rcode=fallback_rcode,
        authoritative=config.DEFAULT_AUTHORITATIVE,
        recursion_available=config.DEFAULT_RECURSION_AVAILABLE,
    )
    return DNSResponder(
        policy,
        host=host if host is not None else config.DEFAULT_LISTEN_HOST,
        port=port if port is not None else config.DEFAULT_LISTEN_PORT,
    )


def main():
    """Run the responder until SIGINT or SIGTERM."""
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    responder = create_responder()

    async def run():
        shutdown = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, shutdown.set)

        await responder.start()
        try:
            await shutdown.wait()
        finally:
            await responder.stop()

    asyncio.run(run())


if __name__ == "__main__":
    main()
