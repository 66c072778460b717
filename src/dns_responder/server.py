"""MCP server for inspecting the DNS responder."""

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Optional

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rdatatype
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from dns_responder import config
from dns_responder.names import validate_domain
from dns_responder.reader import read_query
from dns_responder.responder import DNSResponder, create_responder
from dns_responder.types import (
    DNSRecord,
    DecodeFailure,
    ErrorResponse,
    Query,
    SimulationResponse,
)

logger = logging.getLogger(__name__)


def query_to_dict(query: Query) -> dict[str, Any]:
    """Render a decoded query as JSON-friendly data."""
    return {
        "id": query.id,
        "opcode": query.opcode.name,
        "truncated": query.tc,
        "recursion_desired": query.rd,
        "questions": [
            {"name": q.name, "type": q.qtype.name, "class": q.qclass.name}
            for q in query.questions
        ],
        "success": True,
    }


def decode_message(message: str) -> dict[str, Any]:
    """Decode a hex-encoded DNS message with the responder's reader."""
    try:
        data = bytes.fromhex(message)
    except ValueError as e:
        return asdict(ErrorResponse(error=f"Invalid hex string: {e}"))

    result = read_query(data)
    if isinstance(result, DecodeFailure):
        return asdict(ErrorResponse(error=result.error, reason=result.reason.name))
    return query_to_dict(result)


def simulate_query(responder: DNSResponder, domain: str, record_type: str = "A") -> dict[str, Any]:
    """Send a query built by dnspython through the responder pipeline.

    The reply is parsed back with dnspython, so this also checks that the
    responder's output is understood by an independent implementation.
    """
    is_valid, error = validate_domain(domain)
    if not is_valid:
        return asdict(ErrorResponse(domain=domain, error=error))

    try:
        rdtype = dns.rdatatype.from_text(record_type)
    except dns.exception.DNSException:
        return asdict(ErrorResponse(domain=domain, error=f"Invalid record type: {record_type}"))

    query = dns.message.make_query(domain, rdtype, use_edns=False)
    reply = responder.process(query.to_wire(), peer="simulation")
    if reply is None:
        return asdict(ErrorResponse(domain=domain, error="Query was dropped by the responder"))

    try:
        response = dns.message.from_wire(reply)
    except dns.exception.DNSException as e:
        return asdict(ErrorResponse(domain=domain, error=f"Reply could not be parsed: {e}"))

    records = [
        DNSRecord(type=dns.rdatatype.to_text(rrset.rdtype), value=str(rdata), ttl=rrset.ttl)
        for rrset in response.answer
        for rdata in rrset
    ]
    return asdict(SimulationResponse(
        domain=domain,
        record_type=dns.rdatatype.to_text(rdtype),
        rcode=dns.rcode.to_text(response.rcode()),
        authoritative=bool(response.flags & dns.flags.AA),
        recursion_available=bool(response.flags & dns.flags.RA),
        records=records,
    ))


def responder_status(responder: DNSResponder) -> dict[str, Any]:
    address = responder.bound_address
    return {
        "state": responder.state.value,
        "host": responder.host,
        "port": responder.port,
        "bound_address": f"{address[0]}:{address[1]}" if address else None,
    }


def create_server(responder: Optional[DNSResponder] = None) -> Server:
    """Create and configure the MCP server."""
    server = Server("dns-responder")
    if responder is None:
        responder = create_responder()

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available inspection tools."""
        return [
            Tool(
                name="dns_decode",
                description="Decode a hex-encoded DNS query the way the responder does, or report why it would be dropped.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "message": {
                            "type": "string",
                            "description": "DNS message in wire format, hex encoded",
                        },
                    },
                    "required": ["message"],
                },
            ),
            Tool(
                name="dns_simulate",
                description="Run a query for a domain through the responder and return the answers it would send.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "domain": {
                            "type": "string",
                            "description": "Domain name to query",
                        },
                        "record_type": {
                            "type": "string",
                            "description": "Record type to query (default: 'A'). Examples: A, PTR, MX, TXT",
                            "default": "A",
                        },
                    },
                    "required": ["domain"],
                },
            ),
            Tool(
                name="dns_responder_status",
                description="Report the responder's lifecycle state and socket address.",
                inputSchema={
                    "type": "object",
                    "properties": {},
                },
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        logger.info(f"Tool call: {name} with arguments: {arguments}")

        try:
            if name == "dns_decode":
                result = decode_message(arguments["message"])

            elif name == "dns_simulate":
                result = simulate_query(
                    responder,
                    domain=arguments["domain"],
                    record_type=arguments.get("record_type", "A"),
                )

            elif name == "dns_responder_status":
                result = responder_status(responder)

            else:
                result = {"error": f"Unknown tool: {name}", "success": False}

            return [TextContent(type="text", text=json.dumps(result, indent=2))]

        except Exception as e:
            logger.error(f"Tool {name} failed: {e}")
            error_response = {"error": str(e), "success": False}
            return [TextContent(type="text", text=json.dumps(error_response, indent=2))]

    return server


def main():
    """Run the MCP server over stdio."""
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    server = create_server()

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
