"""
General purpose parsers. Useful as inner parsers for the combinators, and as examples of writing parsers.
"""

from __future__ import annotations
from typing import Any

from collections.abc import Sequence

import chainparse.const as const
from chainparse.main import (
    Stream,
    Result,
    ParseFailure,
    FnParser,
    parser,
)


@parser
def item(si: Stream) -> Result[Any] | ParseFailure[None]:
    """Consumes a single item of any kind."""
    with si() as ckpt:
        if not si.has_items(1):
            return ckpt.fail("Unexpected end of input.")
        return ckpt.result(si.item())

def take(amount: int) -> FnParser[Result[Sequence[Any]] | ParseFailure[None]]:
    """Parser factory for `Stream.take(amount)`."""
    if amount < 0:
        raise ValueError("Amount can't be negative.")
    def inner(si: Stream) -> Result[Sequence[Any]] | ParseFailure[None]:
        with si() as ckpt:
            if (items := si.take(amount)) is None:
                return ckpt.fail(f"Expected {amount} items.")
            return ckpt.result(items)
    return FnParser(inner)

def literal(*values: Sequence[Any]) -> FnParser[Result[Sequence[Any]] | ParseFailure[None]]:
    """
    Parser factory for:
    - `Stream.literal(...)`
    - `Stream.oneof_literals(...)`

    The result's data is the matched literal.
    """
    if len(values) <= 0:
        raise ValueError("At least one literal required.")
    if len(values) == 1:
        value = values[0]
        def inner(si: Stream) -> Result[Sequence[Any]] | ParseFailure[None]:
            with si() as ckpt:
                if si.literal(value):
                    return ckpt.result(value)
                return ckpt.fail(f"Expected {value!r}.")
    else:
        def inner(si: Stream) -> Result[Sequence[Any]] | ParseFailure[None]:
            with si() as ckpt:
                if (matched := si.oneof_literals(values)) is not None:
                    return ckpt.result(matched)
                return ckpt.fail("Expected one of " + ", ".join(repr(v) for v in values) + ".")
    return FnParser(inner)

def _at(si: Stream, chars: frozenset[str]) -> bool:
    """Whether the current item is one of `chars`. Items that aren't strings never match."""
    if not si.has_items(1):
        return False
    current = si[si.pos]
    return isinstance(current, str) and current in chars

@parser
def ws0(si: Stream) -> Result[None]:
    """Matches zero or more whitespace items. Works on strings and on token sequences of characters."""
    with si() as ckpt:
        while _at(si, const.WHITESPACES):
            si.pos += 1
        return ckpt.result(None)

@parser
def integer_number(si: Stream) -> Result[int] | ParseFailure[None]:
    """Decimal integer with an optional sign. Works on strings and on token sequences of characters."""
    with si() as ckpt:
        if _at(si, const.SIGNS):
            si.pos += 1
        if not _at(si, const.DECIMAL):
            return ckpt.fail_start("Expected a decimal digit.")
        while _at(si, const.DECIMAL):
            si.pos += 1
        return ckpt.result(int("".join(ckpt.get_slice())))
