import asyncio

import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import pytest

from havendns.dns_config import NameServer, NameServerKind, UpstreamConfig
from havendns.query import QueryHandler
from havendns.server import DNSServer, create_server, split_upstreams


class FakeTransport:
    def __init__(self):
        self.sent = []

    def sendto(self, data, addr):
        self.sent.append((data, addr))

    def get_extra_info(self, name, default=None):
        return default


class FakeHandler:
    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    async def do_query(self, request, query, database):
        self.calls.append((request.id, query.name.to_text(), query.rdtype, database))
        answer = self.answers.get(query.name.to_text())
        return [answer] if answer is not None else []


class FakeDatabase:
    def __init__(self, records):
        self.records = records

    def lookup_record(self, domain, record_type):
        return self.records.get((domain, record_type))


def _answer(name, address, ttl=300):
    return dns.rrset.from_text(name, ttl, "IN", "A", address)


def test_split_upstreams_keeps_order():
    servers = [
        NameServer.from_dict({"type": "udp", "value": "192.0.2.1:53"}),
        NameServer.from_dict({"type": "doh", "value": "https://dns.example.com/dns-query"}),
        NameServer.from_dict({"type": "udp", "value": "192.0.2.2:5353"}),
    ]
    udp, doh = split_upstreams(servers)
    assert udp == [("192.0.2.1", 53), ("192.0.2.2", 5353)]
    assert doh == ["https://dns.example.com/dns-query"]


def test_split_upstreams_empty():
    assert split_upstreams([]) == ([], [])


@pytest.mark.asyncio
async def test_build_response_copies_header_and_answers():
    answer = _answer("example.com.", "192.0.2.1")
    handler = FakeHandler({"example.com.": answer})
    database = object()
    server = DNSServer(FakeTransport(), handler, database)
    request = dns.message.make_query("example.com.", "A")

    response = dns.message.from_wire(await server.build_response(request.to_wire()))

    assert response.id == request.id
    assert response.flags & dns.flags.QR
    assert response.flags & dns.flags.RD
    assert not response.flags & dns.flags.AA
    assert response.question == []
    assert response.answer == [answer]
    assert response.answer[0].ttl == 300
    assert handler.calls == [(request.id, "example.com.", dns.rdatatype.A, database)]


@pytest.mark.asyncio
async def test_build_response_copies_checking_disabled():
    server = DNSServer(FakeTransport(), FakeHandler({}), None)
    request = dns.message.make_query("example.com.", "A")
    request.flags |= dns.flags.CD
    request.flags &= ~dns.flags.RD

    response = dns.message.from_wire(await server.build_response(request.to_wire()))

    assert response.flags & dns.flags.CD
    assert not response.flags & dns.flags.RD
    assert response.answer == []


@pytest.mark.asyncio
async def test_build_response_answers_every_question_in_order():
    first = _answer("example.com.", "192.0.2.1")
    second = _answer("example.org.", "192.0.2.2")
    handler = FakeHandler({"example.com.": first, "example.org.": second})
    server = DNSServer(FakeTransport(), handler, None)
    request = dns.message.make_query("example.com.", "A")
    request.question.append(
        dns.rrset.RRset(dns.name.from_text("example.org."), dns.rdataclass.IN, dns.rdatatype.A)
    )

    response = dns.message.from_wire(await server.build_response(request.to_wire()))

    assert [call[1] for call in handler.calls] == ["example.com.", "example.org."]
    assert response.answer == [first, second]


@pytest.mark.asyncio
async def test_handle_datagram_sends_reply_to_sender():
    answer = _answer("example.com.", "192.0.2.1")
    transport = FakeTransport()
    server = DNSServer(transport, FakeHandler({"example.com.": answer}), None)
    request = dns.message.make_query("example.com.", "A")
    addr = ("127.0.0.1", 40000)

    reply = await server.handle_datagram(request.to_wire(), addr)

    assert transport.sent == [(reply, addr)]
    assert dns.message.from_wire(reply).answer == [answer]


@pytest.mark.asyncio
async def test_handle_datagram_drops_malformed_input():
    transport = FakeTransport()
    server = DNSServer(transport, FakeHandler({}), None)

    reply = await server.handle_datagram(b"\x01\x02\x03", ("127.0.0.1", 40000))

    assert reply is None
    assert transport.sent == []


@pytest.mark.asyncio
async def test_handle_datagram_answers_from_local_store():
    database = FakeDatabase({("example.com.", "A"): ("10.0.0.1", 60)})
    transport = FakeTransport()
    server = DNSServer(transport, QueryHandler([], []), database)
    request = dns.message.make_query("example.com.", "A")

    reply = await server.handle_datagram(request.to_wire(), ("127.0.0.1", 40000))

    response = dns.message.from_wire(reply)
    assert len(response.answer) == 1
    rrset = response.answer[0]
    assert rrset.name == dns.name.from_text("example.com.")
    assert rrset.ttl == 60
    assert [rdata.address for rdata in rrset] == ["10.0.0.1"]


@pytest.mark.asyncio
async def test_handle_datagram_without_upstreams_sends_nothing():
    transport = FakeTransport()
    server = DNSServer(transport, QueryHandler([], []), FakeDatabase({}))
    request = dns.message.make_query("example.com.", "MX")

    reply = await server.handle_datagram(request.to_wire(), ("127.0.0.1", 40000))

    assert reply is None
    assert transport.sent == []


class _Client(asyncio.DatagramProtocol):
    def __init__(self):
        self.reply = asyncio.get_running_loop().create_future()

    def datagram_received(self, data, addr):
        if not self.reply.done():
            self.reply.set_result(data)


@pytest.mark.asyncio
async def test_create_server_serves_over_udp():
    database = FakeDatabase({("example.com.", "A"): ("10.0.0.1", 60)})
    config = UpstreamConfig(listen=("127.0.0.1", 0), upstream_nameservers=[])
    server = await create_server(config, database)
    assert server.query_handler.udp_upstreams == []
    host, port = server.transport.get_extra_info("sockname")[:2]
    assert host == "127.0.0.1"

    task = asyncio.create_task(server.run())
    loop = asyncio.get_running_loop()
    client_transport, client = await loop.create_datagram_endpoint(
        _Client, remote_addr=(host, port)
    )
    try:
        request = dns.message.make_query("example.com.", "A")
        client_transport.sendto(request.to_wire())
        reply = await asyncio.wait_for(client.reply, 5)
    finally:
        client_transport.close()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        server.transport.close()

    response = dns.message.from_wire(reply)
    assert response.id == request.id
    assert [rdata.address for rdata in response.answer[0]] == ["10.0.0.1"]


@pytest.mark.asyncio
async def test_create_server_splits_configured_upstreams():
    config = UpstreamConfig.from_dict(
        {
            "listen": "127.0.0.1:0",
            "upstream_nameservers": [
                {"type": "doh", "value": "https://dns.example.com/dns-query"},
                {"type": "udp", "value": "192.0.2.1:53"},
            ],
        }
    )
    server = await create_server(config, None)
    try:
        assert server.query_handler.udp_upstreams == [("192.0.2.1", 53)]
        assert server.query_handler.doh_upstreams == ["https://dns.example.com/dns-query"]
        assert config.upstream_nameservers[0].kind is NameServerKind.DOH
    finally:
        server.transport.close()