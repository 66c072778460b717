"""Domain name wire format with message compression (RFC 1035 section 4.1.4)."""

import re
import struct

from dns_responder.errors import DecodeError, EncodingError
from dns_responder.types import FailureReason

MAX_LABEL_LENGTH = 63

# Wire length of a name, length octets and the root label included
MAX_NAME_LENGTH = 255

# Pointers carry a 14 bit offset
MAX_POINTER_OFFSET = 0x3FFF

# A chain longer than this cannot be produced by a sane encoder
MAX_POINTER_HOPS = 127

LABEL_TYPE_MASK = 0xC0
POINTER = 0xC0

# Domain validation pattern (RFC 1035 compliant)
DOMAIN_LABEL_PATTERN = re.compile(r'^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$')


def validate_domain(domain: str) -> tuple[bool, str]:
    """Validate a domain name.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not domain:
        return False, "Domain name cannot be empty"

    # Check total length
    if len(domain) > 253:
        return False, "Domain name exceeds 253 characters"

    # Remove trailing dot if present
    if domain.endswith('.'):
        domain = domain[:-1]

    labels = domain.split('.')
    if not labels or labels == ['']:
        return False, "Invalid domain name format"

    for label in labels:
        if not label:
            return False, "Empty label in domain name"
        if len(label) > MAX_LABEL_LENGTH:
            return False, f"Label '{label}' exceeds {MAX_LABEL_LENGTH} characters"
        if not DOMAIN_LABEL_PATTERN.match(label):
            return False, f"Invalid characters in label '{label}'"

    return True, ""


def decode_name(data: bytes, offset: int) -> tuple[str, int]:
    """Decode the name starting at ``offset``.

    Compression pointers are followed within ``data``; the returned offset
    points just past the name as it appears at ``offset`` (past the pointer,
    not past its target).

    Raises:
        DecodeError: the name is truncated, uses a reserved label type, has a
            pointer that does not point backwards, has a label containing a
            '.' byte, or is longer than 255 octets.
    """
    labels, offset = _read_labels(data, offset, MAX_NAME_LENGTH, 0)
    return ".".join(labels), offset


def _read_labels(data: bytes, offset: int, budget: int, hops: int) -> tuple[list[str], int]:
    labels: list[str] = []

    while True:
        if offset >= len(data):
            raise DecodeError(FailureReason.TRUNCATED, "Name runs past the end of the message")

        length = data[offset]
        label_type = length & LABEL_TYPE_MASK

        if label_type == POINTER:
            if offset + 1 >= len(data):
                raise DecodeError(FailureReason.TRUNCATED, "Compression pointer is cut short")
            pointer = ((length & 0x3F) << 8) | data[offset + 1]
            if pointer >= offset:
                raise DecodeError(
                    FailureReason.MALFORMED_MESSAGE,
                    f"Compression pointer at offset {offset} targets {pointer}, which is not before it",
                )
            if hops >= MAX_POINTER_HOPS:
                raise DecodeError(FailureReason.MALFORMED_MESSAGE, "Too many compression pointers in name")
            suffix, _ = _read_labels(data, pointer, budget, hops + 1)
            labels.extend(suffix)
            return labels, offset + 2

        if label_type:
            raise DecodeError(
                FailureReason.MALFORMED_MESSAGE,
                f"Reserved label type {label_type:#04x} at offset {offset}",
            )

        if length == 0:
            return labels, offset + 1

        # Keep one octet for the root label
        budget -= length + 1
        if budget < 1:
            raise DecodeError(FailureReason.MALFORMED_MESSAGE, f"Name exceeds {MAX_NAME_LENGTH} octets")

        end = offset + 1 + length
        if end > len(data):
            raise DecodeError(FailureReason.TRUNCATED, "Label runs past the end of the message")
        raw = bytes(data[offset + 1:end])
        # Names are dot-joined text, so a dot inside a label cannot round trip
        if b"." in raw:
            raise DecodeError(
                FailureReason.MALFORMED_MESSAGE,
                f"Label at offset {offset} contains a '.' byte",
            )
        labels.append(raw.decode("ascii"))
        offset = end


def split_name(name: str) -> list[str]:
    """Split a name into labels, validating them for the wire.

    The root name ("" or ".") has no labels.

    Raises:
        EncodingError: a label is empty, longer than 63 bytes or not ASCII,
            or the whole name exceeds 255 octets.
    """
    if name.endswith("."):
        name = name[:-1]
    if not name:
        return []

    labels = name.split(".")
    wire_length = 1
    for label in labels:
        try:
            raw = label.encode("ascii")
        except UnicodeEncodeError as e:
            raise EncodingError(f"Label '{label}' is not ASCII") from e
        if not raw:
            raise EncodingError(f"Empty label in name '{name}'")
        if len(raw) > MAX_LABEL_LENGTH:
            raise EncodingError(f"Label '{label}' exceeds {MAX_LABEL_LENGTH} bytes")
        wire_length += len(raw) + 1

    if wire_length > MAX_NAME_LENGTH:
        raise EncodingError(f"Name '{name}' exceeds {MAX_NAME_LENGTH} octets")
    return labels


def encode_name(name: str, offsets: dict[str, int], current_offset: int) -> bytes:
    """Encode ``name`` as it would be written at ``current_offset``.

    ``offsets`` maps every name suffix already written in this message to
    the offset of its first label. The longest known suffix is replaced by a
    pointer; each label written before it is recorded in ``offsets``.
    """
    labels = split_name(name)
    encoded = bytearray()

    for index, label in enumerate(labels):
        suffix = ".".join(labels[index:])
        pointer = offsets.get(suffix)
        if pointer is not None:
            encoded += struct.pack("!H", (POINTER << 8) | pointer)
            return bytes(encoded)

        position = current_offset + len(encoded)
        if position <= MAX_POINTER_OFFSET:
            offsets[suffix] = position

        raw = label.encode("ascii")
        encoded.append(len(raw))
        encoded += raw

    encoded.append(0)
    return bytes(encoded)
