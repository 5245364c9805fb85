"""
Wire-protocol helpers.

Pure functions over bytes used to build and parse PostgreSQL frontend and
backend messages at message level, e.g. to implement the SASL/SCRAM exchange
on top of `Connection` or to split a stream of protocol messages.
"""

# Copyright (C) 2023-2024 The pgfe Team

import struct
from typing import Any, Callable, List, Optional, Tuple, Union, cast

from . import errors as e

Buffer = Union[bytes, bytearray, memoryview]

PackInt = Callable[[int], bytes]
UnpackInt = Callable[[Buffer, int], Tuple[int]]

_pack_int2 = cast(PackInt, struct.Struct("!h").pack)
_pack_int4 = cast(PackInt, struct.Struct("!i").pack)
_unpack_int2 = cast(UnpackInt, struct.Struct("!h").unpack_from)
_unpack_int4 = cast(UnpackInt, struct.Struct("!i").unpack_from)

INT32_MAX = 2**31 - 1

# Size of the chunks XORed at once by strxor()
_XOR_CHUNK = 4096


def htons(value: int) -> bytes:
    """Pack a signed 16 bits integer into 2 bytes in network order."""
    try:
        return _pack_int2(value)
    except struct.error:
        raise ValueError(f"value out of int16 range: {value}") from None


def htonl(value: int) -> bytes:
    """Pack a signed 32 bits integer into 4 bytes in network order."""
    try:
        return _pack_int4(value)
    except struct.error:
        raise ValueError(f"value out of int32 range: {value}") from None


def ntohs(data: Buffer) -> int:
    """Unpack the first 2 bytes of *data* as a signed 16 bits integer."""
    if len(data) < 2:
        raise ValueError("invalid length")
    return _unpack_int2(data, 0)[0]


def ntohl(data: Buffer) -> int:
    """Unpack the first 4 bytes of *data* as a signed 32 bits integer."""
    if len(data) < 4:
        raise ValueError("invalid length")
    return _unpack_int4(data, 0)[0]


def strxor(a: Buffer, b: Buffer) -> bytes:
    """
    Return the bytewise XOR of two strings of the same length.

    Used to compute the SCRAM ``ClientProof`` out of the ``ClientKey`` and
    the ``ClientSignature``.
    """
    if len(a) != len(b):
        raise ValueError(
            "invalid arguments: both strings must be the same length"
        )

    size = len(a)
    if size <= _XOR_CHUNK:
        rv = int.from_bytes(a, "big") ^ int.from_bytes(b, "big")
        return rv.to_bytes(size, "big")

    ma = memoryview(a)
    mb = memoryview(b)
    out = bytearray(size)
    for i in range(0, size, _XOR_CHUNK):
        chunk = ma[i : i + _XOR_CHUNK]
        n = len(chunk)
        x = int.from_bytes(chunk, "big") ^ int.from_bytes(
            mb[i : i + _XOR_CHUNK], "big"
        )
        out[i : i + n] = x.to_bytes(n, "big")
    return bytes(out)


def _format_error(msg: str) -> ValueError:
    return ValueError(f"invalid format string: {msg}")


def unpack(out: List[Any], fmt: str, data: Buffer) -> Optional[int]:
    """
    Decode *data* according to the directives in *fmt*.

    The decoded values are appended to the *out* list. Return the number of
    bytes consumed from *data*, or `!None` if *data* doesn't contain enough
    bytes yet: in this case *out* is restored to its previous content.

    Type specifiers:

    - ``h``: signed 16 bits integer;
    - ``i``: signed 32 bits integer;
    - ``L``: message length, as a signed 32 bits integer including its own
      size. It can be specified only once: the following directives can't
      consume more than the message length;
    - ``s``: null-terminated string;
    - ``b``: raw bytes (a length modifier is required).

    Length modifiers:

    - digits: repeat count (bytes count for ``b``), not allowed after ``L``;
    - ``*``: use the integer unpacked by the previous ``h`` or ``i``
      directive (without modifier) as count. A negative value counts as
      zero. After ``L``, a ``b*`` directive uses the rest of the message.

    :raise ValueError: if *fmt* is not valid.
    :raise ~pgfe.errors.DataError: if the message length is invalid or too
        short to contain a string.
    """
    if isinstance(fmt, bytes):
        fmt = fmt.decode("ascii")
    if not isinstance(data, bytes):
        data = bytes(data)

    mark = len(out)
    avail = len(data)
    pos = 0
    msglen = -1
    pre_iv: Optional[int] = None
    nfmt = len(fmt)
    f = 0

    while f < nfmt:
        t = fmt[f]
        if t == "h":
            unit = 2
        elif t == "i":
            unit = 4
        elif t == "L":
            if msglen != -1:
                raise _format_error(
                    "message length specifier 'L' must be specified only once"
                )
            unit = 4
        elif t == "s" or t == "b":
            unit = 1
        else:
            raise _format_error(f"unknown type specifier '{t}'")
        f += 1

        # length modifier
        k = 1
        if f < nfmt and "0" <= fmt[f] <= "9":
            if t == "L":
                raise _format_error(
                    "digit length modifier can not be specified"
                    " for the type specifier 'L'"
                )
            start = f
            while f < nfmt and "0" <= fmt[f] <= "9":
                f += 1
                if int(fmt[start:f]) > INT32_MAX:
                    raise _format_error(
                        "length modifier must be less than or equal"
                        " to INT32_MAX"
                    )
            k = int(fmt[start:f])
            if k == 0:
                raise _format_error("length modifier must be greater than zero")

        elif f < nfmt and fmt[f] == "*":
            if t not in "hib":
                raise _format_error(
                    "length modifier '*' must be specified only"
                    " for the type specifier 'h', 'i' or 'b'"
                )
            if pre_iv is None:
                raise _format_error(
                    "type specifiers with the length modifier '*' must be"
                    " preceded by the integer type specifier 'i', 'h' or 'L'"
                    " without the length modifier"
                )
            k = max(pre_iv, 0)
            f += 1

        elif t == "b":
            raise _format_error(
                "type specifier 'b' must be followed by length modifier"
            )

        pre_iv = None

        consume = unit * k
        if avail < consume:
            del out[mark:]
            return None

        if t == "h":
            for _ in range(k):
                v = _unpack_int2(data, pos)[0]
                out.append(v)
                pos += 2
            if k == 1:
                pre_iv = v
            avail -= consume

        elif t == "i":
            for _ in range(k):
                v = _unpack_int4(data, pos)[0]
                out.append(v)
                pos += 4
            if k == 1:
                pre_iv = v
            avail -= consume

        elif t == "L":
            msglen = _unpack_int4(data, pos)[0]
            out.append(msglen)
            pos += 4
            if msglen < 4:
                del out[mark:]
                raise e.DataError(
                    "invalid message length: message length must be"
                    " greater than or equal to its own length"
                )
            if avail < msglen:
                del out[mark:]
                return None
            # the rest of the format can't read past the end of the message
            avail = msglen - 4
            if f < nfmt and fmt[f] == "b":
                pre_iv = msglen - 4

        elif t == "s":
            for _ in range(k):
                end = data.find(b"\0", pos, pos + avail)
                if end < 0:
                    del out[mark:]
                    if msglen == -1:
                        return None
                    raise e.DataError(
                        "unable to unpack string data: message length"
                        f" specified as {msglen} is insufficient to unpack"
                        " the string data"
                    )
                out.append(data[pos:end])
                avail -= end - pos + 1
                pos = end + 1

        else:  # t == "b"
            out.append(data[pos : pos + k])
            pos += k
            avail -= k

    return pos
