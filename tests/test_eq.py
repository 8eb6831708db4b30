"""Tests for the equality filters: Eq, Ne, EqOrElse and NeOrElse."""

from __future__ import annotations

from typing import Any

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest
from hypothesis import given
from hypothesis import strategies as st

from chainparse import (
    ConfigurationError,
    Eq,
    EqOrElse,
    EqualityFilter,
    FnParser,
    Ne,
    NeOrElse,
    OrElse,
    ParseError,
    ParseFailure,
    Parser,
    Result,
    Stream,
    general,
)
from chainparse.general import integer_number, item


class CountingCtor:
    """A diagnostic constructor that counts how often it's called."""

    def __init__(self, diagnostic: Any = "mismatch") -> None:
        self.calls = 0
        self.diagnostic = diagnostic

    def __call__(self) -> Any:
        self.calls += 1
        return self.diagnostic


def constant(value: Any, width: int = 1) -> FnParser[Result[Any]]:
    """Consumes `width` items and succeeds with `value`."""
    def inner(si: Stream) -> Result[Any]:
        start = si.pos
        si.pos += width
        return Result(value, (start, si.pos))
    return FnParser(inner)


def failing(pos: int = 0, error: Any = None) -> FnParser[ParseFailure[Any]]:
    """Always fails structurally, with the same failure object."""
    failure = ParseFailure(pos, error, msg="Unexpected end of input.")
    return FnParser(lambda si: failure)


class TestScenarios:
    def test_equal_value_succeeds(self) -> None:
        assert integer_number.eq(5).parse("5") == Result(5, (0, 1))

    def test_unequal_value_fails_silently(self) -> None:
        r = integer_number.eq(7).parse("5")
        assert not r
        assert r == ParseFailure(0)
        assert r.error is None

    def test_not_equals_succeeds_on_different_value(self) -> None:
        assert integer_number.ne(7).parse("5") == Result(5, (0, 1))
        assert integer_number.eq(7).not_().parse("5") == Result(5, (0, 1))

    def test_diagnostic_on_mismatch(self) -> None:
        ctor = CountingCtor("mismatch")
        r = integer_number.eq(7).or_else(ctor).parse("5")
        assert not r
        assert r.error == "mismatch"
        assert ctor.calls == 1

    def test_unwrap_without_source(self) -> None:
        with pytest.raises(ParseError, match="mismatch"):
            integer_number.eq(7).or_else(lambda: "mismatch").parse("5").unwrap()
        assert integer_number.eq(5).parse("5").unwrap() == 5

    def test_diagnostic_surfaces_through_parse_or_raise(self) -> None:
        p = integer_number.eq(7).or_else(lambda: "expected 7")
        assert p.parse_or_raise("7") == 7
        with pytest.raises(ParseError, match="expected 7"):
            p.parse_or_raise("5")

    def test_value_of_other_type(self) -> None:
        assert integer_number.eq(5.0).parse("5")
        assert item.eq("a").parse(["a"]) == Result("a", (0, 1))
        assert not item.eq("a").parse("b")


class TestDiagnosticCalls:
    def test_not_called_on_success(self) -> None:
        ctor = CountingCtor()
        p = constant(5).eq(5).or_else(ctor)
        assert p.parse("x")
        assert ctor.calls == 0

    def test_not_called_on_structural_failure(self) -> None:
        ctor = CountingCtor()
        assert not failing().eq(5).or_else(ctor).parse("")
        assert not failing().ne(5).or_else(ctor).parse("")
        assert ctor.calls == 0

    def test_called_once_per_failing_call(self) -> None:
        ctor = CountingCtor()
        p = constant(5).ne(5).or_else(ctor)
        for expected in (1, 2, 3):
            assert p.parse("x").error == "mismatch"
            assert ctor.calls == expected


class TestStructuralFailure:
    @pytest.mark.parametrize("build", [
        lambda p: p.eq(5),
        lambda p: p.ne(5),
        lambda p: p.eq(5).or_else(lambda: "x"),
        lambda p: p.ne(5).or_else(lambda: "x"),
    ])
    def test_propagated_untouched(self, build: Any) -> None:
        inner = failing(3, "inner")
        expected = inner.parse("")
        assert build(inner).parse("") is expected

    def test_comparison_not_evaluated(self) -> None:
        class Explosive:
            def __eq__(self, other: object) -> bool:
                raise AssertionError("compared")
            def __ne__(self, other: object) -> bool:
                raise AssertionError("compared")

        assert not failing().eq(Explosive()).parse("")
        assert not failing().ne(Explosive()).parse("")


class TestStreamPosition:
    def test_success_keeps_inner_position(self) -> None:
        si = Stream("57 rest")
        assert integer_number.eq(57).parse_stream(si)
        assert si.pos == 2

    def test_comparison_failure_keeps_inner_position(self) -> None:
        si = Stream("57 rest")
        assert not integer_number.eq(7).parse_stream(si)
        assert si.pos == 2

    def test_structural_failure_keeps_inner_position(self) -> None:
        si = Stream("x")
        assert not integer_number.eq(7).or_else(lambda: "e").parse_stream(si)
        assert si.pos == 0

    @given(st.integers(min_value=0, max_value=5), st.integers(), st.integers())
    def test_position_matches_inner(self, width: int, v: int, r: int) -> None:
        inner = constant(v, width)
        for p in (inner.eq(r), inner.ne(r), inner.eq(r).or_else(lambda: "e"), inner.ne(r).or_else(lambda: "e")):
            alone, filtered = Stream("abcdef"), Stream("abcdef")
            inner.parse_stream(alone)
            p.parse_stream(filtered)
            assert filtered.pos == alone.pos


class TestProperties:
    @given(st.integers(), st.integers())
    def test_eq_succeeds_iff_equal(self, v: int, r: int) -> None:
        res = integer_number.eq(r).parse(str(v))
        assert bool(res) == (v == r)
        if res:
            assert res.value == v

    @given(st.integers(), st.integers())
    def test_ne_succeeds_iff_different(self, v: int, r: int) -> None:
        res = integer_number.ne(r).parse(str(v))
        assert bool(res) == (v != r)
        if res:
            assert res.value == v

    @given(st.integers(), st.integers())
    def test_negation_inverts_and_keeps_mode(self, v: int, r: int) -> None:
        ctor = CountingCtor()
        negated = constant(v).eq(r).or_else(ctor).not_()
        res = negated.parse("x")
        assert bool(res) == (v != r)
        assert ctor.calls == (0 if v != r else 1)
        if not res:
            assert res.error == "mismatch"

    @given(st.text(alphabet="0123456789-", max_size=6))
    def test_reusable_across_streams(self, src: str) -> None:
        p = integer_number.ne(0).or_else(lambda: "zero")
        assert p.parse(src) == p.parse(src)


class TestBuilders:
    def test_direction_is_not_shared_by_isinstance(self) -> None:
        assert not isinstance(item.ne(1), Eq)
        assert not isinstance(item.eq(1), Ne)
        assert not isinstance(item.ne(1).or_else(str), EqOrElse)
        assert not isinstance(item.eq(1).or_else(str), NeOrElse)
        assert not isinstance(item.eq(1).or_else(str), Eq)

    def test_parser_methods(self) -> None:
        assert type(item.eq(1)) is Eq
        assert type(item.ne(1)) is Ne
        assert type(item.eq(1).or_else(lambda: "e")) is EqOrElse
        assert type(item.ne(1).or_else(lambda: "e")) is NeOrElse
        assert type(item.eq(1).not_()) is Ne
        assert type(item.eq(1).or_else(lambda: "e").not_()) is NeOrElse

    def test_all_variants_are_parsers(self) -> None:
        for p in (item.eq(1), item.ne(1), item.eq(1).or_else(str), item.ne(1).or_else(str)):
            assert isinstance(p, EqualityFilter)
            assert isinstance(p, Parser)

    def test_or_else_keeps_parts(self) -> None:
        def diag() -> str:
            return "e"
        base = item.ne(3)
        attached = base.or_else(diag)
        assert attached.parser is base.parser
        assert attached.value == 3
        assert isinstance(attached.mode, OrElse)
        assert attached.mode.f is diag
        assert base.mode is None

    def test_not_keeps_mode(self) -> None:
        attached = item.eq(3).or_else(lambda: "e")
        negated = attached.not_()
        assert negated.mode is attached.mode
        assert negated.parser is attached.parser
        assert negated.value == 3

    def test_invert_operator(self) -> None:
        assert type(~item.eq(1)) is Ne
        assert type(~item.eq(1).or_else(str)) is NeOrElse

    def test_builders_leave_original_untouched(self) -> None:
        base = constant(5).eq(5)
        base.not_()
        base.or_else(lambda: "e")
        assert type(base) is Eq
        assert base.mode is None
        assert base.parse("x")

    def test_second_or_else_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            item.eq(1).or_else(lambda: "a").or_else(lambda: "b")
        with pytest.raises(ConfigurationError):
            item.ne(1).or_else(lambda: "a").or_else(lambda: "b")

    @pytest.mark.parametrize("negated", [
        lambda: item.ne(1),
        lambda: item.eq(1).not_(),
        lambda: item.ne(1).or_else(lambda: "a"),
    ])
    def test_not_from_not_equals_rejected(self, negated: Any) -> None:
        with pytest.raises(ConfigurationError):
            negated().not_()
        with pytest.raises(ConfigurationError):
            ~negated()

    def test_immutable(self) -> None:
        p = item.eq(1)
        with pytest.raises(AttributeError):
            p.value = 2
        with pytest.raises(AttributeError):
            del p.parser
        with pytest.raises(AttributeError):
            p.extra = 1
        assert p.value == 1

    def test_direct_construction(self) -> None:
        p = EqOrElse(general.take(2), "ab", OrElse(lambda: "expected ab"))
        assert p.parse("ab") == Result("ab", (0, 2))
        assert p.parse("ac").error == "expected ab"

    def test_repr(self) -> None:
        assert repr(Eq(item, 1)).startswith("Eq(<FnParser 'item'>, 1")
        assert "OrElse(" in repr(item.ne(1).or_else(str))


class LockedCountingCtor(CountingCtor):
    """`CountingCtor` that can be called from several threads."""

    def __init__(self, diagnostic: Any = "mismatch") -> None:
        super().__init__(diagnostic)
        self.lock = threading.Lock()

    def __call__(self) -> Any:
        with self.lock:
            return super().__call__()


class TestThreads:
    def test_shared_combinator_with_own_streams(self) -> None:
        ctor = LockedCountingCtor("not five")
        p = integer_number.eq(5).or_else(ctor)
        inputs = [str(i % 10) + " tail" for i in range(200)]

        def run(src: str) -> tuple[Any, int]:
            si = Stream(src)
            return p.parse_stream(si), si.pos

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(run, inputs))

        for src, (res, pos) in zip(inputs, outcomes):
            assert pos == 1
            if src.startswith("5"):
                assert res == Result(5, (0, 1))
            else:
                assert res == ParseFailure(0, "not five")
        assert ctor.calls == sum(1 for src in inputs if not src.startswith("5"))
