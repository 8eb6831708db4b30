"""
The implementations of the main classes.
"""

from __future__ import annotations
from typing import overload, Any, Self, Literal, TypeVar, Generic, SupportsIndex, Final, Callable, Sequence, Protocol
from types import TracebackType

from abc import ABC, abstractmethod
import logging

_logger = logging.getLogger(__name__)


_T = TypeVar("_T")
_DataT = TypeVar("_DataT")
_ErrT = TypeVar("_ErrT")
_DataCovT = TypeVar("_DataCovT", covariant=True)
_ErrCovT = TypeVar("_ErrCovT", covariant=True)
_OutCovT = TypeVar("_OutCovT", covariant=True)



class ParseError(Exception):
    """
    The exception that's raised when a parse failure has to be surfaced as an error.

    Combinators never raise it. It's created by `ParseFailure.to_error()`, `Checkpoint.error()` and `Parser.parse_or_raise()`.
    """

    def __init__(self, src: Sequence[Any] | None, pos: int, msg: str | None = None) -> None:
        """
        `src`: The input that was being parsed. Can be `None`, in which case only the position is noted.
        `pos`: The position of the error.
        `msg`: The reason for the error.
        """
        if msg is None:
            super().__init__()
        else:
            super().__init__(msg)
        self.src: Sequence[Any] | None = src
        self.pos: int = pos
        self.append_pos_note(pos)

    def append_pos_note(self, pos: int, msg: str | None = None) -> Self:
        note: list[str] = [] if msg is None else [msg]

        if self.src is not None:
            pos = min(pos, len(self.src))
        if not isinstance(self.src, str):
            note.append(f"At position {pos}")
            self.add_note("\n".join(note))
            return self

        # should still work with CRLF
        line = self.src.count("\n", 0, pos) + 1
        column = pos - self.src.rfind("\n", 0, pos) # magically works even when it returns -1
        note.append(f"At position {pos} (line {line}, column {column})")

        lines = self.src.splitlines()
        if len(lines) > line-1:
            line_str = lines[line-1]
            if len(line_str) >= column:
                if column <= 20:
                    note.append(f"{line_str[:40]}\n{' '*(column-1)}^")
                else:
                    note.append(f"{line_str[(column-20):(column+20)]}\n{' '*20}^")
        self.add_note("\n".join(note))
        return self

class ConfigurationError(Exception):
    """
    Raised when a combinator is built in a way that isn't allowed.

    This is a programmer error, not a data error. For example, attaching a second diagnostic with `or_else()`.
    """



class Response(Protocol[_DataCovT, _ErrCovT]):
    """
    The outcome of one parse attempt.

    Truthy on success. `value` is the carried value on success, `error` is the diagnostic of a failure (if any).
    """
    def __bool__(self) -> bool: ...
    @property
    def value(self) -> _DataCovT | None: ...
    @property
    def error(self) -> _ErrCovT | None: ...

class Filterable(Response[_DataCovT, _ErrCovT], Protocol):
    """A response that can be narrowed to a silent failure by a predicate over its value."""
    def filter_response(self, predicate: Callable[[Any], bool]) -> Response[_DataCovT, _ErrCovT]: ...

class FilterableWithErr(Response[_DataCovT, _ErrCovT], Protocol):
    """A response that can be narrowed to a failure carrying a constructed diagnostic."""
    def filter_response_or_else(self, predicate: Callable[[Any], bool], f: Callable[[], Any]) -> Response[_DataCovT, Any]: ...


class Result(Generic[_DataCovT]):
    """
    When returned from a parser, indicates that it has succeeded. Contains the parsed data.

    ```
    r = parser.parse(src)
    if r:
        output = r.data
    else:
        ... # failed
    ```

    When used for typing: `Result[DataType]`
    """
    __slots__ = ("data", "pos")

    def __init__(self, data: _DataCovT, pos: tuple[int, int] | None = None) -> None:
        self.data: Final[_DataCovT] = data
        self.pos: Final[tuple[int, int] | None] = pos
        """The consumed range. `None` if the parser doesn't track positions."""

    @property
    def value(self) -> _DataCovT:
        """Same as `data`."""
        return self.data

    @property
    def error(self) -> None:
        return None

    def map(self, f: Callable[[_DataCovT], _T]) -> Result[_T]:
        """Creates a copy of this result with `f` applied to the data."""
        return Result(f(self.data), self.pos)

    def unwrap(self, src: Sequence[Any] | None = None) -> _DataCovT:
        return self.data

    def filter_response(self, predicate: Callable[[_DataCovT], bool]) -> Result[_DataCovT] | ParseFailure[None]:
        """
        Returns this result if the predicate holds for the data.

        Otherwise returns a `ParseFailure` with no diagnostic, positioned at the start of the result.
        """
        if predicate(self.data):
            return self
        return ParseFailure(self._start())

    def filter_response_or_else(self, predicate: Callable[[_DataCovT], bool], f: Callable[[], _ErrT]) -> Result[_DataCovT] | ParseFailure[_ErrT]:
        """
        Returns this result if the predicate holds for the data.

        Otherwise calls `f` once and returns a `ParseFailure` carrying its return value as the diagnostic.
        """
        if predicate(self.data):
            return self
        return ParseFailure(self._start(), f())

    def _start(self) -> int | None:
        return None if self.pos is None else self.pos[0]

    def __bool__(self) -> Literal[True]:
        return True

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Result):
            return self.data == other.data and self.pos == other.pos
        return NotImplemented

    __hash__ = None # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            "<Result"
            + ("" if self.pos is None else f" {self.pos[0]}..{self.pos[1]}")
            + " {" + repr(self.data) + "}>"
        )

class ParseFailure(Generic[_ErrCovT]):
    """
    When returned from a parser, indicates that it has failed. Can be converted into a `ParseError`.

    `error` holds the diagnostic attached by the combinator that failed, or `None` for a silent failure.

    ```
    r = parser.parse(src)
    if r:
        ... # `r` is a `Result` object
    else:
        ... # `r` is a `ParseFailure` object
    ```
    """
    __slots__ = ("pos", "_error", "msg")

    def __init__(self, pos: int | None, error: _ErrCovT | None = None, msg: str | None = None) -> None:
        """
        `pos`: The position of the failure.
        `error`: The diagnostic value.
        `msg`: The reason for the failure.
        """
        self.pos: Final[int | None] = pos
        self._error: Final[_ErrCovT | None] = error
        self.msg: Final[str | None] = msg

    @property
    def value(self) -> None:
        return None

    @property
    def error(self) -> _ErrCovT | None:
        return self._error

    def map(self, f: Callable[[Any], Any]) -> Self:
        return self

    def filter_response(self, predicate: Callable[[Any], bool]) -> Self:
        """Failures are propagated as-is. The predicate isn't called."""
        return self

    def filter_response_or_else(self, predicate: Callable[[Any], bool], f: Callable[[], Any]) -> Self:
        """Failures are propagated as-is. Neither the predicate nor `f` is called."""
        return self

    def to_error(self, src: Sequence[Any] | None = None) -> ParseError:
        """Converts this to a ParseError."""
        msg = self.msg
        if msg is None and self._error is not None:
            msg = str(self._error)
        return ParseError(src, 0 if self.pos is None else self.pos, msg)

    def unwrap(self, src: Sequence[Any] | None = None) -> Any:
        """
        Raises this failure as a `ParseError`.

        Pass the parsed input as `src` to get line and column information in the error notes.
        """
        if isinstance(self._error, BaseException):
            raise self.to_error(src) from self._error
        raise self.to_error(src)

    def __bool__(self) -> Literal[False]:
        return False

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParseFailure):
            return self.pos == other.pos and self._error == other._error and self.msg == other.msg
        return NotImplemented

    __hash__ = None # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            "<ParseFailure"
            + ("" if self.pos is None else f" at {self.pos}")
            + ("" if self._error is None else f" {self._error!r}")
            + ("" if self.msg is None else f" {self.msg!r}")
            + ">"
        )



class Stream:
    """
    A cursor over the input. The input can be a string or any sequence of tokens.

    Parsers read and advance it. Advancing is a side effect that's visible to whatever reads the stream next.
    """
    def __init__(self, src: Sequence[Any], starting_pos: int = 0) -> None:
        self.src: Sequence[Any] = src
        """The input that's being parsed."""
        self.pos: int = starting_pos
        """The current position."""

    def __len__(self) -> int:
        return len(self.src)

    def __getitem__(self, key: SupportsIndex | slice) -> Any:
        return self.src[key]

    def has_items(self, amount: int) -> bool:
        """Whether there are at least that many items left."""
        return self.pos+amount <= len(self.src)

    def is_eof(self) -> bool:
        """Whether the end of the input has been reached. The opposite of `not_eof()` and `__bool__()`"""
        return self.pos >= len(self.src)

    def not_eof(self) -> bool:
        """Whether there are any items left to parse. The opposite of `is_eof()`"""
        return self.pos < len(self.src)

    def __bool__(self) -> bool:
        """Whether there are any items left to parse. The opposite of `is_eof()`"""
        return self.pos < len(self.src)

    def peek(self, amount: int) -> Sequence[Any] | None:
        """
        Retrieves the specified amount of items without consuming.

        If there aren't enough items, returns `None`.
        """
        if not self.has_items(amount):
            return None
        return self.src[self.pos:self.pos+amount]

    def take(self, amount: int) -> Sequence[Any] | None:
        """
        Consumes and retrieves the specified amount of items.

        If there aren't enough items, returns `None`.
        """
        if not self.has_items(amount):
            return None
        start_pos = self.pos
        self.pos += amount
        return self.src[start_pos:self.pos]

    def item(self) -> Any:
        """
        Consumes and retrieves a single item.

        If the input is exhausted, returns `None`. Use `has_items(1)` first if `None` can be an item.
        """
        if not self.has_items(1):
            return None
        self.pos += 1
        return self.src[self.pos-1]

    def literal(self, value: Sequence[Any]) -> bool:
        """
        Attempts to match the given slice. `value` should be of the same sequence type as the input.

        Advances the position if it matched.

        Returns a bool indicating whether or not the slice was matched.
        """
        if not self.has_items(len(value)):
            return False
        if self.src[self.pos:self.pos+len(value)] == value:
            self.pos += len(value)
            return True
        else:
            return False

    def oneof_literals(self, values: Sequence[Sequence[Any]]) -> Sequence[Any] | None:
        """
        Attempts to match any of the given slices, starting from the first.

        Advances the position if it matched.

        Returns the matched slice, or `None` if none of them matched.
        """
        for pattern in values:
            if self.literal(pattern):
                return pattern
        return None

    def save(self) -> Savepoint:
        """Saves the current position as a `Savepoint` and returns it."""
        return Savepoint(self)

    def checkpoint(self) -> Checkpoint:
        """
        Creates a `Checkpoint` at the current position.

        Same as `Stream.__call__()`
        """
        return Checkpoint(self)

    def __call__(self) -> Checkpoint:
        """
        Creates a `Checkpoint` at the current position.

        Same as `Stream.checkpoint()`
        """
        return Checkpoint(self)


class Savepoint:
    """
    A simplified and faster version of `Checkpoint`.

    Can only be reverted manually. (By calling the savepoint.)
    """
    def __init__(self, si: Stream) -> None:
        self.pos: Final[int] = si.pos
        self.si: Final[Stream] = si

    def __call__(self) -> None:
        """Same as `Savepoint.rollback()`."""
        self.si.pos = self.pos

    def rollback(self) -> None:
        """Same as `Savepoint.__call__()`."""
        self.si.pos = self.pos

    def get_range(self) -> tuple[int, int]:
        return (self.pos, self.si.pos)

    def guard(self, value: _T) -> _T:
        """
        If the parameter is falsy, rolls back.

        Returns the parameter as-is.
        ```
        si.save().guard(si.literal("test"))
        ```
        """
        if not value:
            self.rollback()
        return value


class Checkpoint:
    """
    Used as a context manager:
    ```
    with si() as c:
        return c.result(data)           # Successfully matched
        return c.fail("Failure reason.")    # Failed to match
        raise c.error("Error reason.")      # Irrecoverable error
    ```

    Rolls the stream back on exit unless a result was produced.
    """
    def __init__(self, si: Stream) -> None:
        """
        Create using `Stream.checkpoint()` or `Stream.__call__()` instead.
        """
        self.pos: Final[int] = si.pos
        """The saved position."""
        self.si: Final[Stream] = si
        """The bound Stream."""
        self.committed: bool = False

    def commit(self) -> None:
        """Commited checkpoints will not be rolled back automatically."""
        self.committed = True

    def rollback(self) -> None:
        """Rolls back the stream to the starting position. (Regardless of the checkpoint being commited or not.)"""
        self.si.pos = self.pos

    def rollback_if_uncommited(self) -> None:
        if not self.committed:
            self.si.pos = self.pos

    def get_range(self) -> tuple[int, int]:
        return (self.pos, self.si.pos)

    def get_slice(self) -> Sequence[Any]:
        return self.si.src[self.pos : self.si.pos]

    def result(self, data: _DataT) -> Result[_DataT]:
        """
        Commits and returns a `Result` object.

        Uses the checkpoint's saved position as the start, and the current stream position as the end position of the result.
        """
        self.committed = True
        return Result(data, self.get_range())

    def fail(self, msg: str | None = None) -> ParseFailure[None]:
        """Uncommits and returns a `ParseFailure` positioned at the current position of the stream."""
        self.committed = False
        return ParseFailure(self.si.pos, msg=msg)

    def fail_start(self, msg: str | None = None) -> ParseFailure[None]:
        """Uncommits and returns a `ParseFailure` positioned at the starting position of the checkpoint."""
        self.committed = False
        return ParseFailure(self.pos, msg=msg)

    def error(self, msg: str | None = None) -> ParseError:
        """Creates a `ParseError` at the current position of the stream."""
        self.committed = False
        return ParseError(self.si.src, self.si.pos, msg)

    def __enter__(self) -> Self:
        return self

    @overload
    def __exit__(self, exctype: None, exc: None, traceback: None) -> Literal[False]: ...
    @overload
    def __exit__(self, exctype: type[BaseException], exc: BaseException, traceback: TracebackType) -> Literal[False]: ...

    def __exit__(
        self,
        exctype: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc is None:
            self.rollback_if_uncommited()
        else:
            self.rollback()
        return False



class Parser(ABC, Generic[_OutCovT]):
    """
    The capability every parsing unit implements.

    `parse_stream()` reads and advances the given stream and returns a response. A parser holds no per-call state, so the same parser can be used with any number of independent streams.

    ```
    digit = literal(*"0123456789")
    digit.parse("7")            # <Result 0..1 {'7'}>
    digit.eq("7").parse("8")    # <ParseFailure at 0>
    ```
    """
    __slots__ = ()

    @abstractmethod
    def parse_stream(self, si: Stream) -> _OutCovT:
        ...

    def parse(self, src: Sequence[Any], starting_pos: int = 0) -> _OutCovT:
        """Parses `src` with a fresh `Stream`."""
        return self.parse_stream(Stream(src, starting_pos))

    def parse_or_raise(self, src: Sequence[Any], starting_pos: int = 0) -> Any:
        """Parses `src` and returns the parsed value. Raises a `ParseError` on failure."""
        r: Any = self.parse(src, starting_pos)
        return r.unwrap(src)

    def eq(self, value: Any) -> Eq:
        """Fails unless the parsed value equals `value`. See `Eq`."""
        return Eq(self, value)

    def ne(self, value: Any) -> Ne:
        """Fails if the parsed value equals `value`. See `Ne`."""
        return Ne(self, value)

class FnParser(Parser[_OutCovT]):
    """Wraps a plain `(Stream) -> response` function as a `Parser`."""
    __slots__ = ("fn",)

    def __init__(self, fn: Callable[[Stream], _OutCovT]) -> None:
        self.fn: Final[Callable[[Stream], _OutCovT]] = fn

    def parse_stream(self, si: Stream) -> _OutCovT:
        return self.fn(si)

    def __repr__(self) -> str:
        return f"<FnParser {getattr(self.fn, '__name__', self.fn)!r}>"

def parser(fn: Callable[[Stream], _OutCovT]) -> FnParser[_OutCovT]:
    """
    Decorator for defining parsers as functions.

    ```
    @parser
    def foo(si: Stream) -> Result[int] | ParseFailure[None]:
        with si() as c:
            if si.literal("abc"):
                return c.result(10)
            return c.fail("Expected `abc`.")
    ```
    """
    return FnParser(fn)



class OrElse(Generic[_ErrT]):
    """A marker holding the diagnostic constructor of an `EqOrElse` or `NeOrElse`."""
    __slots__ = ("f",)

    def __init__(self, f: Callable[[], _ErrT]) -> None:
        self.f: Final[Callable[[], _ErrT]] = f

    def __repr__(self) -> str:
        return f"OrElse({self.f!r})"


class EqualityFilter(Parser[Any]):
    """
    Common state of `Eq`, `Ne`, `EqOrElse` and `NeOrElse`.

    The variant is picked by the class, so `parse_stream()` never checks which one it is. Instances are immutable; the builder methods return new objects.
    """
    __slots__ = ("parser", "value", "mode")

    parser: Parser[Any]
    value: Any
    mode: OrElse[Any] | None

    def __init__(self, parser: Parser[Any], value: Any, mode: OrElse[Any] | None) -> None:
        object.__setattr__(self, "parser", parser)
        object.__setattr__(self, "value", value)
        object.__setattr__(self, "mode", mode)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"cannot assign to field {name!r} of immutable {type(self).__name__}")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"cannot delete field {name!r} of immutable {type(self).__name__}")

    @abstractmethod
    def _holds(self, v: Any) -> bool:
        ...

    @abstractmethod
    def not_(self) -> EqualityFilter:
        ...

    def __invert__(self) -> EqualityFilter:
        """Same as `not_()`."""
        return self.not_()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.parser!r}, {self.value!r}"
            + ("" if self.mode is None else f", {self.mode!r}")
            + ")"
        )

class _Equal:
    __slots__ = ()
    value: Any

    def _holds(self, v: Any) -> bool:
        return v == self.value

class _NotEqual:
    __slots__ = ()
    value: Any

    def _holds(self, v: Any) -> bool:
        return v != self.value

    def not_(self) -> EqualityFilter:
        """There's no way back from the not-equals direction."""
        _logger.debug("Rejected not_() on %s", type(self).__name__)
        raise ConfigurationError(f"{type(self).__name__} is already negated and can't be turned back into an equality check.")

class _Silent:
    __slots__ = ()
    parser: Parser[Any]

    def __init__(self, parser: Parser[Any], value: Any) -> None:
        super().__init__(parser, value, None) # type: ignore[call-arg]

    _holds: Callable[[Any], bool]

    def parse_stream(self, si: Stream) -> Any:
        return self.parser.parse_stream(si).filter_response(self._holds)

class _WithError:
    __slots__ = ()
    parser: Parser[Any]
    mode: OrElse[Any]

    _holds: Callable[[Any], bool]

    def parse_stream(self, si: Stream) -> Any:
        return self.parser.parse_stream(si).filter_response_or_else(self._holds, self.mode.f)

    def or_else(self, f: Callable[[], Any]) -> EqualityFilter:
        _logger.debug("Rejected a second or_else() on %s", type(self).__name__)
        raise ConfigurationError(f"{type(self).__name__} already has a diagnostic attached.")


class Eq(_Equal, _Silent, EqualityFilter):
    """
    A parser for checking equality with a value.

    Runs the inner parser, and fails silently if the parsed value doesn't equal `value`. The stream is left where the inner parser left it.

    Created by `Parser.eq()`:
    ```
    integer_number.eq(5).parse("5")     # <Result 0..1 {5}>
    integer_number.eq(7).parse("5")     # <ParseFailure at 0>
    ```
    """
    __slots__ = ()

    def or_else(self, f: Callable[[], _ErrT]) -> EqOrElse:
        """
        Attaches a diagnostic constructor. `f` is only called when the comparison fails.

        Can only be attached once.
        """
        return EqOrElse(self.parser, self.value, OrElse(f))

    def not_(self) -> Ne:
        """Flips the check into an inequality check."""
        return Ne(self.parser, self.value)

class Ne(_NotEqual, _Silent, EqualityFilter):
    """
    A parser for checking inequality with a value.

    Created by `Parser.ne()` or `Eq.not_()`.

    Shares its body with `Eq` through the mixins, but isn't an `Eq`. Check the direction with `isinstance(p, Ne)`.
    """
    __slots__ = ()

    def or_else(self, f: Callable[[], _ErrT]) -> NeOrElse:
        return NeOrElse(self.parser, self.value, OrElse(f))

class EqOrElse(_Equal, _WithError, EqualityFilter):
    """
    A parser for checking equality with a value, generating a diagnostic in case of failure.

    Created by `Eq.or_else()`:
    ```
    integer_number.eq(7).or_else(lambda: "mismatch").parse("5")    # <ParseFailure at 0 'mismatch'>
    ```
    """
    __slots__ = ()

    def __init__(self, parser: Parser[Any], value: Any, mode: OrElse[Any]) -> None:
        super().__init__(parser, value, mode)

    def not_(self) -> NeOrElse:
        """Flips the check into an inequality check. The diagnostic is kept."""
        return NeOrElse(self.parser, self.value, self.mode)

class NeOrElse(_NotEqual, _WithError, EqualityFilter):
    """
    A parser for checking inequality with a value, generating a diagnostic in case of failure.

    Created by `Ne.or_else()` or `EqOrElse.not_()`.
    """
    __slots__ = ()

    def __init__(self, parser: Parser[Any], value: Any, mode: OrElse[Any]) -> None:
        super().__init__(parser, value, mode)
