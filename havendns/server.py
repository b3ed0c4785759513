"""The UDP listener that answers DNS questions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

import dns.flags
import dns.message
import dns.opcode

from havendns.dns_config import NameServer, NameServerKind, SocketAddr, UpstreamConfig
from havendns.query import QueryHandler

logger = logging.getLogger(__name__)

MAX_DATAGRAM = 512


def split_upstreams(nameservers: Iterable[NameServer]) -> tuple[list[SocketAddr], list[str]]:
    """Separate upstreams into UDP addresses and DoH URLs, keeping their order."""
    udp: list[SocketAddr] = []
    doh: list[str] = []
    for nameserver in nameservers:
        (udp if nameserver.kind is NameServerKind.UDP else doh).append(nameserver.value)  # type: ignore[arg-type]
    return udp, doh


class DNSServer:
    """Answers each incoming datagram in turn, one at a time."""

    def __init__(self, transport: Any, query_handler: Any, database: Any) -> None:
        self.transport = transport
        self.query_handler = query_handler
        self.database = database
        self.inbox: asyncio.Queue[tuple[bytes, Any]] = asyncio.Queue()

    async def build_response(self, data: bytes) -> bytes:
        """Decode a request and encode the answers to every question in it.

        The response echoes the id, opcode and RD/CD flags, and carries no question section.
        """
        request = dns.message.from_wire(data)
        logger.debug("Request: %s", request)
        response = dns.message.Message(id=request.id)
        response.flags = (
            dns.flags.QR
            | (request.flags & (dns.flags.RD | dns.flags.CD))
            | dns.opcode.to_flags(request.opcode())
        )
        for question in request.question:
            response.answer.extend(
                await self.query_handler.do_query(request, question, self.database)
            )
        logger.debug("Response: %s", response)
        return response.to_wire()

    async def handle_datagram(self, data: bytes, addr: Any) -> bytes | None:
        """Answer one datagram and send the reply; return it, or None after logging a failure."""
        data = data[:MAX_DATAGRAM]
        logger.debug("Received %d bytes from %s", len(data), addr)
        try:
            reply = await self.build_response(data)
            self.transport.sendto(reply, addr)
        except Exception as exc:
            logger.error("Failed to handle query: %s", exc)
            return None
        return reply

    async def run(self) -> None:
        """Serve datagrams until cancelled."""
        logger.info("DNS Server listening on %s", self.transport.get_extra_info("sockname"))
        while True:
            await self.handle_datagram(*await self.inbox.get())


class _Listener(asyncio.DatagramProtocol):
    def __init__(self, inbox: asyncio.Queue[tuple[bytes, Any]]) -> None:
        self.inbox = inbox

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.inbox.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        logger.error("Failed to handle query: %s", exc)


async def create_server(config: UpstreamConfig, database: Any) -> DNSServer:
    """Bind the listening socket and set up the upstreams from the config."""
    handler = QueryHandler(*split_upstreams(config.upstream_nameservers))
    inbox: asyncio.Queue[tuple[bytes, Any]] = asyncio.Queue()
    transport, _ = await asyncio.get_running_loop().create_datagram_endpoint(
        lambda: _Listener(inbox), local_addr=config.listen
    )
    server = DNSServer(transport, handler, database)
    server.inbox = inbox
    return server