"""Answering questions from the cache, the local store, or upstreams."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import Sequence
from typing import Any

import dns.exception
import dns.message
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import httpx

from havendns.dns_config import SocketAddr

logger = logging.getLogger(__name__)

_UDP_BUFFER_SIZE = 512
_A, _AAAA, _CNAME = dns.rdatatype.A, dns.rdatatype.AAAA, dns.rdatatype.CNAME


class _UdpExchange(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.response: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr: Any) -> None:
        if not self.response.done():
            self.response.set_result(data[:_UDP_BUFFER_SIZE])

    def error_received(self, exc: Exception) -> None:
        if not self.response.done():
            self.response.set_exception(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if not self.response.done():
            self.response.set_exception(exc or ConnectionError("socket closed"))


class QueryHandler:
    """Resolves questions through the cache, the local store and the upstreams."""

    def __init__(
        self,
        udp_upstreams: Sequence[SocketAddr],
        doh_upstreams: Sequence[str],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.udp_upstreams = list(udp_upstreams)
        self.doh_upstreams = list(doh_upstreams)
        self.client = client if client is not None else httpx.AsyncClient()
        self.cache: dict[tuple[dns.name.Name, int], dns.rrset.RRset] = {}

    async def query_local(self, query: dns.rrset.RRset, database: Any) -> dns.rrset.RRset | None:
        """Answer A, AAAA and CNAME questions from the local record store."""
        rdtype = query.rdtype
        if rdtype not in (_A, _AAAA, _CNAME):
            return None
        found = await asyncio.to_thread(
            database.lookup_record, query.name.to_text(), dns.rdatatype.to_text(rdtype)
        )
        if found is None:
            return None
        value, ttl = found
        ttl %= 1 << 32

        if rdtype == _CNAME:
            try:
                target = dns.name.from_text(value)
            except dns.exception.DNSException:
                return None
            rdata = dns.rdata.from_text(dns.rdataclass.IN, rdtype, target.to_text())
            return dns.rrset.from_rdata(target, ttl, rdata)

        parse = ipaddress.IPv4Address if rdtype == _A else ipaddress.IPv6Address
        try:
            address = parse(value)
        except ValueError:
            return None
        rdata = dns.rdata.from_text(dns.rdataclass.IN, rdtype, str(address))
        return dns.rrset.from_rdata(query.name, ttl, rdata)

    async def _udp_exchange(self, payload: bytes, upstream: SocketAddr) -> bytes:
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _UdpExchange, local_addr=("0.0.0.0", 0)
        )
        try:
            transport.sendto(payload, upstream)
            return await protocol.response
        finally:
            transport.close()

    async def _doh_exchange(self, payload: bytes, url: str) -> bytes:
        response = await self.client.post(url, content=payload)
        return response.content

    async def query_upstreams(
        self, request: dns.message.Message, query: dns.rrset.RRset
    ) -> list[dns.rrset.RRset]:
        """Ask every upstream at once and use whichever finishes first."""
        if not self.udp_upstreams and not self.doh_upstreams:
            raise ValueError("no upstream nameservers configured")

        outgoing = dns.message.Message(id=request.id)
        outgoing.flags = request.flags
        outgoing.question.append(dns.rrset.RRset(query.name, query.rdclass, query.rdtype))
        payload = outgoing.to_wire()

        tasks = [asyncio.create_task(self._udp_exchange(payload, u)) for u in self.udp_upstreams]
        tasks += [asyncio.create_task(self._doh_exchange(payload, u)) for u in self.doh_upstreams]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        winner = next(task for task in tasks if task in done)
        return list(dns.message.from_wire(winner.result()).answer)

    async def query_cache(self, query: dns.rrset.RRset, database: Any) -> dns.rrset.RRset | None:
        """Return the cached answer for the question's name and type, if any."""
        return self.cache.get((query.name, query.rdtype))

    async def do_query(
        self, request: dns.message.Message, query: dns.rrset.RRset, database: Any
    ) -> list[dns.rrset.RRset]:
        """Answer one question: cache first, then the local store, then upstreams."""
        type_text = dns.rdatatype.to_text(query.rdtype)
        name = query.name

        logger.debug("Query cache: %s %s", type_text, name)
        record = await self.query_cache(query, database)
        if record is not None:
            return [record]

        logger.debug("Cache miss, Query local: %s %s", type_text, name)
        record = await self.query_local(query, database)
        if record is not None:
            return [record]

        logger.debug("Cache miss, Query upstreams: %s %s", type_text, name)
        return await self.query_upstreams(request, query)