#!/usr/bin/env python3
"""drawing_parsing.py

A bidirectional grammar for a small scene-description language of unit
squares and unit circles, grouped and transformed by rotation, scaling and
translation.

Key features:
- One grammar description drives both parsing and printing.
- Backtracking rules that never consume input on failure.
- Canonical printing (one blank line between shapes and between groups).
- Structured parse errors carrying the failing rule and input offset.
- SVG rendering of a parsed document.

Run:
  python drawing_parsing.py format scene.shapes [output.shapes]
  python drawing_parsing.py validate scene.shapes
  python drawing_parsing.py render scene.shapes output.svg --config opts.json
  python drawing_parsing.py --help
"""

from __future__ import annotations

import argparse
import dataclasses
import enum
import json
import logging
import math
import os
import re
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, NamedTuple, TypeVar, Union, cast

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E", bound=enum.Enum)


# -------------------------
# Errors
# -------------------------


class ErrorKind(enum.Enum):
    UNEXPECTED_TOKEN = "unexpected token"
    MALFORMED_NUMBER = "malformed number"
    MISSING_SEPARATOR = "missing separator"
    EMPTY_GROUP = "empty group"
    UNKNOWN_STYLE = "unknown style"
    UNKNOWN_COLOR = "unknown color"


class GrammarError(ValueError):
    pass


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    rule: str
    offset: int
    message: str


class ParseError(GrammarError):
    def __init__(self, failure: Failure, text: str) -> None:
        line, column = _line_col(text, failure.offset)
        super().__init__(
            f"{failure.kind.value} in {failure.rule} at line {line}, "
            f"column {column}: {failure.message}"
        )
        self.kind = failure.kind
        self.rule = failure.rule
        self.offset = failure.offset
        self.line = line
        self.column = column


class PrintDomainError(GrammarError):
    """Raised when a printer is asked for a value its rule cannot represent."""

    def __init__(self, rule: str, message: str) -> None:
        super().__init__(f"cannot print {rule}: {message}")
        self.rule = rule


class ConfigError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _line_col(text: str, offset: int) -> tuple[int, int]:
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


# -------------------------
# Document model
# -------------------------


class Point(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class Rotate:
    angle_deg: float


@dataclass(frozen=True)
class Scale:
    sx: float
    sy: float


@dataclass(frozen=True)
class Translate:
    tx: float
    ty: float


Transform = Union[Rotate, Scale, Translate]


class Style(enum.Enum):
    PATH = "path"
    CLOSED = "closed"
    FILLED = "filled"


class Color(enum.Enum):
    BLACK = "black"
    WHITE = "white"
    GRAY = "gray"
    RED = "red"
    GREEN = "green"
    BLUE = "blue"
    YELLOW = "yellow"
    ORANGE = "orange"
    CYAN = "cyan"
    MAGENTA = "magenta"
    BROWN = "brown"
    PINK = "pink"


@dataclass(frozen=True)
class DrawStyle:
    style: Style
    color: Color


@dataclass(frozen=True)
class UnitSquare:
    draw_style: DrawStyle
    name: str = ""
    transforms: tuple[Transform, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "transforms", tuple(self.transforms))


@dataclass(frozen=True)
class UnitCircle:
    draw_style: DrawStyle
    name: str = ""
    transforms: tuple[Transform, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "transforms", tuple(self.transforms))


Shape = Union[UnitSquare, UnitCircle]


@dataclass(frozen=True)
class ShapeGroup:
    """Shapes sharing group-level transforms.

    Group transforms apply after each shape's own transforms.
    """

    shapes: tuple[Shape, ...]
    name: str = ""
    transforms: tuple[Transform, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "shapes", tuple(self.shapes))
        object.__setattr__(self, "transforms", tuple(self.transforms))


@dataclass(frozen=True)
class Document:
    groups: tuple[ShapeGroup, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", tuple(self.groups))


# -------------------------
# Parser/printer infrastructure
# -------------------------


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    end: int


Result = Union[Success[T], Failure]


class ParseState:
    """Input text plus the furthest failure recorded while parsing it.

    A fresh state is created for every parse, so rules stay re-entrant.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.furthest: Failure | None = None

    def fail(self, kind: ErrorKind, rule: str, offset: int, message: str) -> Failure:
        failure = Failure(kind, rule, offset, message)
        best = self.furthest
        if (
            best is None
            or offset > best.offset
            or (
                offset == best.offset
                and best.kind is ErrorKind.UNEXPECTED_TOKEN
                and kind is not ErrorKind.UNEXPECTED_TOKEN
            )
        ):
            self.furthest = failure
        return failure


class Grammar(Generic[T]):
    """A rule that parses text into a value and prints the value back.

    `parse_at` returns a Success holding the value and the end offset, or
    the Failure it recorded; it never raises for malformed input.
    `print` returns the canonical text for a value and raises
    PrintDomainError when the value is outside what the rule represents.

    Rules with `produces_value = False` parse to None and are skipped when a
    Seq collects its values.
    """

    produces_value = True

    def __init__(self, rule: str) -> None:
        self.rule = rule

    def parse_at(self, state: ParseState, pos: int) -> Result[T]:
        raise NotImplementedError

    def print(self, value: T) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rule!r})"


class Conversion(Generic[T]):
    """Two-way mapping between a tuple of parsed values and a model value."""

    def apply(self, *payload: Any) -> T:
        raise NotImplementedError

    def unapply(self, value: T) -> tuple[Any, ...]:
        raise NotImplementedError


class Memberwise(Conversion[T]):
    """Build `cls` from parsed values and take it apart again for printing.

    The inverse refuses any value that is not an instance of `cls`, which
    pairs each variant rule with exactly one model class.
    """

    def __init__(self, cls: type[T], *fields: str) -> None:
        self.cls = cls
        if fields:
            self.fields = fields
        elif dataclasses.is_dataclass(cls):
            self.fields = tuple(f.name for f in dataclasses.fields(cls))
        else:
            self.fields = tuple(cast(Any, cls)._fields)

    def apply(self, *payload: Any) -> T:
        return self.cls(**dict(zip(self.fields, payload)))

    def unapply(self, value: T) -> tuple[Any, ...]:
        if not isinstance(value, self.cls):
            raise PrintDomainError(
                self.cls.__name__,
                f"expected {self.cls.__name__}, got {type(value).__name__}",
            )
        return tuple(getattr(value, f) for f in self.fields)


# -------------------------
# Leaf rules
# -------------------------

_HSPACE_RE = re.compile(r"[ \t]*")
_NEWLINE_RE = re.compile(r"\r\n|\n|\r")
_BLANK_LINE_RE = re.compile(r"[ \t]*(?:\r\n|\n|\r)")
_ANY_SPACE_RE = re.compile(r"\s*")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_NUMBER_TAIL_RE = re.compile(r"[\w.]")
_WORD_RE = re.compile(r"[A-Za-z]+")
_REST_OF_LINE_RE = re.compile(r"[^\r\n]*")


class Literal(Grammar[None]):
    produces_value = False

    def __init__(self, text: str, *, rule: str | None = None) -> None:
        super().__init__(rule or repr(text))
        self.text = text

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        if state.text.startswith(self.text, pos):
            return Success(None, pos + len(self.text))
        return state.fail(
            ErrorKind.UNEXPECTED_TOKEN, self.rule, pos, f"expected {self.text!r}"
        )

    def print(self, value: None = None) -> str:
        return self.text


class HorizontalSpace(Grammar[None]):
    """A run of at least `minimum` spaces or tabs; prints `printed`."""

    produces_value = False

    def __init__(
        self,
        minimum: int = 0,
        *,
        printed: str | None = None,
        rule: str = "whitespace",
    ) -> None:
        super().__init__(rule)
        self.minimum = minimum
        self.printed = " " * minimum if printed is None else printed

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        m = _HSPACE_RE.match(state.text, pos)
        end = m.end() if m else pos
        if end - pos < self.minimum:
            return state.fail(
                ErrorKind.MISSING_SEPARATOR, self.rule, pos, "expected space or tab"
            )
        return Success(None, end)

    def print(self, value: None = None) -> str:
        return self.printed


class Newline(Grammar[None]):
    """Exactly one line terminator."""

    produces_value = False

    def __init__(self, *, rule: str = "line break") -> None:
        super().__init__(rule)

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        m = _NEWLINE_RE.match(state.text, pos)
        if m is None:
            return state.fail(
                ErrorKind.MISSING_SEPARATOR, self.rule, pos, "expected end of line"
            )
        return Success(None, m.end())

    def print(self, value: None = None) -> str:
        return "\n"


class LineBreaks(Grammar[None]):
    """At least `minimum` line terminators; lines holding only spaces or
    tabs count as blank. Prints `printed` regardless of how many were read.
    """

    produces_value = False

    def __init__(self, minimum: int, *, printed: str, rule: str = "blank line") -> None:
        super().__init__(rule)
        self.minimum = minimum
        self.printed = printed

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        count = 0
        end = pos
        m = _BLANK_LINE_RE.match(state.text, end)
        while m is not None:
            count += 1
            end = m.end()
            m = _BLANK_LINE_RE.match(state.text, end)
        if count < self.minimum:
            return state.fail(
                ErrorKind.MISSING_SEPARATOR,
                self.rule,
                pos,
                f"expected {self.minimum} line break(s), found {count}",
            )
        return Success(None, end)

    def print(self, value: None = None) -> str:
        return self.printed


class Whitespace(Grammar[None]):
    """Any whitespace, including line breaks; discarded and never printed."""

    produces_value = False

    def __init__(self, *, rule: str = "whitespace") -> None:
        super().__init__(rule)

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        m = _ANY_SPACE_RE.match(state.text, pos)
        return Success(None, m.end() if m else pos)

    def print(self, value: None = None) -> str:
        return ""


class End(Grammar[None]):
    produces_value = False

    def __init__(self, *, rule: str = "end of input") -> None:
        super().__init__(rule)

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        if pos == len(state.text):
            return Success(None, pos)
        return state.fail(
            ErrorKind.UNEXPECTED_TOKEN, self.rule, pos, "expected end of input"
        )

    def print(self, value: None = None) -> str:
        return ""


def format_number(value: float, rule: str = "number") -> str:
    """Shortest text that parses back to exactly `value`."""
    x = float(value)
    if not math.isfinite(x):
        raise PrintDomainError(rule, f"{x!r} is not a finite number")
    return repr(x)


class Number(Grammar[float]):
    """A signed integer or decimal literal, optionally with an exponent."""

    def __init__(self, *, rule: str = "number") -> None:
        super().__init__(rule)

    def parse_at(self, state: ParseState, pos: int) -> Result[float]:
        text = state.text
        m = _NUMBER_RE.match(text, pos)
        if m is None or _NUMBER_TAIL_RE.match(text, m.end()):
            return state.fail(
                ErrorKind.MALFORMED_NUMBER, self.rule, pos, "expected a number"
            )
        value = float(m.group())
        if not math.isfinite(value):
            return state.fail(
                ErrorKind.MALFORMED_NUMBER,
                self.rule,
                pos,
                f"{m.group()!r} is out of range",
            )
        return Success(value, m.end())

    def print(self, value: float) -> str:
        return format_number(value, self.rule)


class Keyword(Grammar[E]):
    """One word from a closed vocabulary given by an enum's values."""

    def __init__(self, vocabulary: type[E], *, kind: ErrorKind, rule: str) -> None:
        super().__init__(rule)
        self.vocabulary = vocabulary
        self.kind = kind
        self.words = {cast(str, member.value): member for member in vocabulary}

    def parse_at(self, state: ParseState, pos: int) -> Result[E]:
        m = _WORD_RE.match(state.text, pos)
        if m is None:
            return state.fail(
                ErrorKind.UNEXPECTED_TOKEN, self.rule, pos, f"expected a {self.rule}"
            )
        member = self.words.get(m.group())
        if member is None:
            return state.fail(
                self.kind,
                self.rule,
                pos,
                f"{m.group()!r} is not one of {', '.join(self.words)}",
            )
        return Success(member, m.end())

    def print(self, value: E) -> str:
        if not isinstance(value, self.vocabulary):
            raise PrintDomainError(self.rule, f"{value!r} is not a {self.rule}")
        return cast(str, value.value)


class RestOfLine(Grammar[str]):
    """Everything up to, not including, the next line terminator."""

    def __init__(self, *, rule: str = "text") -> None:
        super().__init__(rule)

    def parse_at(self, state: ParseState, pos: int) -> Result[str]:
        m = _REST_OF_LINE_RE.match(state.text, pos)
        end = m.end() if m else pos
        return Success(state.text[pos:end], end)

    def print(self, value: str) -> str:
        if "\n" in value or "\r" in value:
            raise PrintDomainError(self.rule, f"{value!r} spans more than one line")
        return value


# -------------------------
# Combinators
# -------------------------


class Seq(Grammar[Any]):
    """Run parts in order; values of value-producing parts feed `conversion`.

    Without a conversion a single value passes through unchanged and
    several values form a tuple.
    """

    def __init__(
        self,
        *parts: Grammar[Any],
        conversion: Conversion[Any] | None = None,
        rule: str = "sequence",
    ) -> None:
        super().__init__(rule)
        self.parts = parts
        self.conversion = conversion
        self.arity = sum(1 for p in parts if p.produces_value)
        self.produces_value = conversion is not None or self.arity > 0

    def parse_at(self, state: ParseState, pos: int) -> Result[Any]:
        values: list[Any] = []
        cur = pos
        for part in self.parts:
            r = part.parse_at(state, cur)
            if isinstance(r, Failure):
                return r
            if part.produces_value:
                values.append(r.value)
            cur = r.end
        if self.conversion is not None:
            return Success(self.conversion.apply(*values), cur)
        if self.arity == 1:
            return Success(values[0], cur)
        return Success(tuple(values) if values else None, cur)

    def print(self, value: Any = None) -> str:
        if self.conversion is not None:
            payload = list(self.conversion.unapply(value))
        elif self.arity == 1:
            payload = [value]
        elif self.arity == 0:
            payload = []
        else:
            payload = list(value)
        if len(payload) != self.arity:
            raise PrintDomainError(
                self.rule, f"expected {self.arity} value(s), got {len(payload)}"
            )
        values = iter(payload)
        out: list[str] = []
        for part in self.parts:
            out.append(part.print(next(values) if part.produces_value else None))
        return "".join(out)


class OneOf(Grammar[Any]):
    """First alternative that matches; on failure the furthest one is reported."""

    def __init__(self, *alternatives: Grammar[Any], rule: str) -> None:
        super().__init__(rule)
        self.alternatives = alternatives
        self.produces_value = any(a.produces_value for a in alternatives)

    def parse_at(self, state: ParseState, pos: int) -> Result[Any]:
        furthest: Failure | None = None
        for alt in self.alternatives:
            r = alt.parse_at(state, pos)
            if isinstance(r, Success):
                return r
            if furthest is None or r.offset > furthest.offset:
                furthest = r
        assert furthest is not None
        return furthest

    def print(self, value: Any = None) -> str:
        last: PrintDomainError | None = None
        for alt in self.alternatives:
            try:
                return alt.print(value)
            except PrintDomainError as e:
                last = e
        raise PrintDomainError(
            self.rule, f"no alternative can print {value!r}"
        ) from last


class Many(Grammar[tuple[Any, ...]]):
    """Repeat `element`, optionally separated and terminated.

    A separator is only consumed when an element follows it, so the text
    after the last element is left for the enclosing rule.
    """

    def __init__(
        self,
        element: Grammar[Any],
        *,
        minimum: int = 0,
        separator: Grammar[None] | None = None,
        terminator: Grammar[None] | None = None,
        too_few: ErrorKind = ErrorKind.UNEXPECTED_TOKEN,
        rule: str,
    ) -> None:
        super().__init__(rule)
        self.element = element
        self.minimum = minimum
        self.separator = separator
        self.terminator = terminator
        self.too_few = too_few

    def parse_at(self, state: ParseState, pos: int) -> Result[tuple[Any, ...]]:
        items: list[Any] = []
        cur = pos
        nxt = pos
        while True:
            r = self.element.parse_at(state, nxt)
            # stop on failure or on an element that consumed nothing
            if isinstance(r, Failure) or (items and r.end == cur):
                break
            items.append(r.value)
            cur = r.end
            if self.separator is None:
                nxt = cur
                continue
            s = self.separator.parse_at(state, cur)
            if isinstance(s, Failure):
                break
            nxt = s.end

        if len(items) < self.minimum:
            return state.fail(
                self.too_few,
                self.rule,
                cur,
                f"expected at least {self.minimum} item(s), found {len(items)}",
            )
        if self.terminator is not None:
            t = self.terminator.parse_at(state, cur)
            if isinstance(t, Failure):
                return t
            cur = t.end
        return Success(tuple(items), cur)

    def print(self, value: Iterable[Any]) -> str:
        items = list(value)
        if len(items) < self.minimum:
            raise PrintDomainError(
                self.rule,
                f"expected at least {self.minimum} item(s), got {len(items)}",
            )
        sep = self.separator.print(None) if self.separator is not None else ""
        body = sep.join(self.element.print(item) for item in items)
        if self.terminator is not None:
            body += self.terminator.print(None)
        return body


class Peek(Grammar[None]):
    """Succeed when `inner` would match, without consuming anything."""

    produces_value = False

    def __init__(self, inner: Grammar[Any], *, rule: str | None = None) -> None:
        super().__init__(rule or inner.rule)
        self.inner = inner

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        r = self.inner.parse_at(state, pos)
        if isinstance(r, Failure):
            return r
        return Success(None, pos)

    def print(self, value: None = None) -> str:
        return ""


class Not(Grammar[None]):
    """Succeed, consuming nothing, only when `inner` does not match."""

    produces_value = False

    def __init__(self, inner: Grammar[Any], *, rule: str | None = None) -> None:
        super().__init__(rule or inner.rule)
        self.inner = inner

    def parse_at(self, state: ParseState, pos: int) -> Result[None]:
        r = self.inner.parse_at(state, pos)
        if isinstance(r, Success):
            return state.fail(
                ErrorKind.UNEXPECTED_TOKEN, self.rule, pos, f"unexpected {self.inner.rule}"
            )
        return Success(None, pos)

    def print(self, value: None = None) -> str:
        return ""


class Constant(Grammar[T]):
    """Give a void rule a fixed value; prints only that value."""

    def __init__(self, inner: Grammar[None], value: T, *, rule: str | None = None) -> None:
        super().__init__(rule or inner.rule)
        self.inner = inner
        self.value = value

    def parse_at(self, state: ParseState, pos: int) -> Result[T]:
        r = self.inner.parse_at(state, pos)
        if isinstance(r, Failure):
            return r
        return Success(self.value, r.end)

    def print(self, value: T) -> str:
        if value != self.value:
            raise PrintDomainError(self.rule, f"expected {self.value!r}, got {value!r}")
        return self.inner.print(None)


# -------------------------
# Lexical primitives
# -------------------------


class _Name(Conversion[str]):
    """A non-empty name that reads back unchanged after one leading space."""

    def apply(self, *payload: Any) -> str:
        return cast(str, payload[0])

    def unapply(self, value: str) -> tuple[Any, ...]:
        if not isinstance(value, str) or not value:
            raise PrintDomainError("comment", "name is empty")
        if value[0] in " \t":
            raise PrintDomainError("comment", f"{value!r} starts with whitespace")
        return (value,)


NUMBER = Number()

POINT: Grammar[Point] = Seq(
    HorizontalSpace(0),
    Number(rule="point"),
    HorizontalSpace(1, rule="point"),
    Number(rule="point"),
    HorizontalSpace(0),
    conversion=Memberwise(Point),
    rule="point",
)

POINTS = Many(POINT, minimum=1, separator=Newline(rule="points"), rule="points")

COMMENT: Grammar[str] = OneOf(
    Seq(HorizontalSpace(1, rule="comment"), RestOfLine(rule="comment"), conversion=_Name()),
    Constant(Not(HorizontalSpace(1), rule="comment"), ""),
    rule="comment",
)


# -------------------------
# Transform grammar
# -------------------------


def _transform_rule(tag: str, cls: type[Any], rule: str, operands: int) -> Grammar[Any]:
    parts: list[Grammar[Any]] = [Literal(tag, rule=rule)]
    for _ in range(operands):
        parts.append(HorizontalSpace(1, rule=rule))
        parts.append(Number(rule=rule))
    return Seq(*parts, conversion=Memberwise(cls), rule=rule)


ROTATE = _transform_rule("r", Rotate, "rotate", 1)
SCALE = _transform_rule("s", Scale, "scale", 2)
TRANSLATE = _transform_rule("t", Translate, "translate", 2)

TRANSFORM: Grammar[Transform] = Seq(
    HorizontalSpace(0),
    OneOf(ROTATE, SCALE, TRANSLATE, rule="transform"),
    HorizontalSpace(0),
    rule="transform",
)

# one or more transforms, one per line
TRANSFORMS = Many(
    TRANSFORM, minimum=1, separator=Newline(rule="transforms"), rule="transforms"
)

# Trailing transforms of a shape or group header. Each transform brings its
# own leading line break; a line break that is not followed by a transform
# is left for the enclosing rule, which then sees it through the Peek.
SHAPE_TRANSFORMS = Many(
    Seq(Newline(rule="transforms"), TRANSFORM, rule="transforms"),
    terminator=OneOf(End(), Peek(Newline(rule="transforms")), rule="transforms"),
    rule="transforms",
)


# -------------------------
# Style grammar
# -------------------------

STYLE = Keyword(Style, kind=ErrorKind.UNKNOWN_STYLE, rule="style")
COLOR = Keyword(Color, kind=ErrorKind.UNKNOWN_COLOR, rule="color")

DRAW_STYLE: Grammar[DrawStyle] = Seq(
    HorizontalSpace(0),
    STYLE,
    HorizontalSpace(1, rule="draw style"),
    COLOR,
    HorizontalSpace(0),
    conversion=Memberwise(DrawStyle),
    rule="draw style",
)


# -------------------------
# Shape grammar
# -------------------------


def shape_rule(keyword: str, cls: type[Any], rule: str) -> Grammar[Any]:
    """Keyword line with optional name, style line, trailing transforms."""
    return Seq(
        HorizontalSpace(0),
        Literal(keyword, rule=rule),
        COMMENT,
        Newline(rule=rule),
        DRAW_STYLE,
        SHAPE_TRANSFORMS,
        conversion=Memberwise(cls, "name", "draw_style", "transforms"),
        rule=rule,
    )


UNIT_SQUARE: Grammar[UnitSquare] = shape_rule("unit square", UnitSquare, "unit square")
UNIT_CIRCLE: Grammar[UnitCircle] = shape_rule("unit circle", UnitCircle, "unit circle")

SHAPE: Grammar[Shape] = OneOf(UNIT_SQUARE, UNIT_CIRCLE, rule="shape")


# -------------------------
# Group / document grammar
# -------------------------

SHAPES = Many(
    SHAPE,
    minimum=1,
    separator=LineBreaks(1, printed="\n\n", rule="group"),
    too_few=ErrorKind.EMPTY_GROUP,
    rule="group",
)

GROUP: Grammar[ShapeGroup] = Seq(
    Whitespace(),
    Literal("group", rule="group"),
    COMMENT,
    SHAPE_TRANSFORMS,
    LineBreaks(1, printed="\n\n", rule="group"),
    SHAPES,
    conversion=Memberwise(ShapeGroup, "name", "transforms", "shapes"),
    rule="group",
)

GROUPS = Many(
    GROUP, separator=LineBreaks(2, printed="\n\n", rule="document"), rule="document"
)

DOCUMENT: Grammar[Document] = Seq(
    GROUPS, Whitespace(), conversion=Memberwise(Document), rule="document"
)


# -------------------------
# Entry points
# -------------------------

_TRAILING = Whitespace()


def parse_with(grammar: Grammar[T], text: str) -> T:
    """Parse all of `text` with `grammar`; trailing whitespace is ignored.

    Raises ParseError for the furthest failure seen when the rule does not
    match or input is left over.
    """
    state = ParseState(text)
    r = grammar.parse_at(state, 0)
    if isinstance(r, Success):
        end = cast(Success[None], _TRAILING.parse_at(state, r.end)).end
        if end == len(text):
            return r.value
        state.fail(ErrorKind.UNEXPECTED_TOKEN, grammar.rule, end, "unexpected text")
    assert state.furthest is not None
    raise ParseError(state.furthest, text)


def print_with(grammar: Grammar[T], value: T) -> str:
    return grammar.print(value)


def parse_document(text: str) -> Document:
    try:
        doc = parse_with(DOCUMENT, text)
    except ParseError as e:
        logger.debug("document parse failed: %s", e)
        raise
    logger.debug(
        "parsed %d group(s), %d shape(s) from %d characters",
        len(doc.groups),
        sum(len(g.shapes) for g in doc.groups),
        len(text),
    )
    return doc


def print_document(document: Document) -> str:
    text = DOCUMENT.print(document)
    logger.debug("printed %d group(s) as %d characters", len(document.groups), len(text))
    return text


def load_document(path: str) -> Document:
    with open(path, encoding="utf-8") as f:
        return parse_document(f.read())


# -------------------------
# Affine composition
# -------------------------

# (a, b, c, d, e, f) maps (x, y) to (a*x + c*y + e, b*x + d*y + f), as in SVG.
Matrix = tuple[float, float, float, float, float, float]
IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


def transform_matrix(t: Transform) -> Matrix:
    if isinstance(t, Rotate):
        rad = math.radians(t.angle_deg)
        cos, sin = math.cos(rad), math.sin(rad)
        return (cos, sin, -sin, cos, 0.0, 0.0)
    if isinstance(t, Scale):
        return (float(t.sx), 0.0, 0.0, float(t.sy), 0.0, 0.0)
    if isinstance(t, Translate):
        return (1.0, 0.0, 0.0, 1.0, float(t.tx), float(t.ty))
    raise TypeError(f"Expected a transform, got {type(t).__name__}")


def _then(m1: Matrix, m2: Matrix) -> Matrix:
    """Matrix applying m1 first, then m2."""
    a1, b1, c1, d1, e1, f1 = m1
    a2, b2, c2, d2, e2, f2 = m2
    return (
        a2 * a1 + c2 * b1,
        b2 * a1 + d2 * b1,
        a2 * c1 + c2 * d1,
        b2 * c1 + d2 * d1,
        a2 * e1 + c2 * f1 + e2,
        b2 * e1 + d2 * f1 + f2,
    )


def combine(transforms: Iterable[Transform]) -> Matrix:
    """Compose transforms left to right into one matrix."""
    m = IDENTITY
    for t in transforms:
        m = _then(m, transform_matrix(t))
    return m


def apply_matrix(m: Matrix, p: Point) -> Point:
    a, b, c, d, e, f = m
    x, y = p
    return Point(a * x + c * y + e, b * x + d * y + f)


_SQUARE_CORNERS = (Point(0, 0), Point(1, 0), Point(1, 1), Point(0, 1))
_CIRCLE_SAMPLES = 64


def shape_outline(shape: Shape) -> list[Point]:
    """Outline of the untransformed shape.

    The unit square spans (0,0)-(1,1); the unit circle has radius 1 about
    the origin and is sampled for bounds computation.
    """
    if isinstance(shape, UnitSquare):
        return list(_SQUARE_CORNERS)
    if isinstance(shape, UnitCircle):
        angles = (2 * math.pi * i / _CIRCLE_SAMPLES for i in range(_CIRCLE_SAMPLES))
        return [Point(math.cos(a), math.sin(a)) for a in angles]
    raise TypeError(f"Expected a shape, got {type(shape).__name__}")


def placed_shapes(document: Document) -> list[tuple[Shape, Matrix]]:
    """Every shape with its world matrix: own transforms, then its group's."""
    out: list[tuple[Shape, Matrix]] = []
    for group in document.groups:
        for shape in group.shapes:
            out.append((shape, combine([*shape.transforms, *group.transforms])))
    return out


# -------------------------
# SVG writing
# -------------------------


@dataclass(frozen=True)
class SvgOptions:
    margin: float = 0.5
    precision: int = 3
    flip_y: bool = True
    width: float | None = None
    height: float | None = None
    stroke_width: float = 1.0
    background: str | None = None
    title: str | None = None


def _ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)


def compute_bounds(outlines: Sequence[Sequence[Point]]) -> tuple[float, float, float, float]:
    _require(len(outlines) > 0, "No drawable geometry produced.")
    min_x = min_y = math.inf
    max_x = max_y = -math.inf
    for pl in outlines:
        for x, y in pl:
            min_x = min(min_x, x)
            max_x = max(max_x, x)
            min_y = min(min_y, y)
            max_y = max(max_y, y)
    return (min_x, min_y, max_x, max_y)


def _fmt(x: float, precision: int) -> str:
    # Normalise -0.0 so it never produces "-0" in SVG output.
    if not x:
        x = 0.0
    s = f"{x:.{precision}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s in ("-0", ""):
        s = "0"
    return s


def _escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _shape_element(shape: Shape, m: Matrix, options: SvgOptions) -> str:
    p = options.precision
    matrix = ",".join(_fmt(v, p) for v in m)
    color = shape.draw_style.color.value
    if shape.draw_style.style is Style.FILLED:
        paint = f'fill="{color}" stroke="none"'
    else:
        paint = (
            f'fill="none" stroke="{color}" '
            f'stroke-width="{_fmt(options.stroke_width, p)}" '
            'vector-effect="non-scaling-stroke"'
        )
    attrs = f'transform="matrix({matrix})" {paint}'
    if shape.name:
        attrs += f' id="{_escape(shape.name)}"'

    if isinstance(shape, UnitCircle):
        return f'<circle cx="0" cy="0" r="1" {attrs} />'
    pts = " ".join(f"{_fmt(x, p)},{_fmt(y, p)}" for x, y in _SQUARE_CORNERS)
    # a path square is left open between its last and first corner
    tag = "polyline" if shape.draw_style.style is Style.PATH else "polygon"
    return f'<{tag} points="{pts}" {attrs} />'


def write_svg(document: Document, *, out_path: str, options: SvgOptions) -> None:
    placed = placed_shapes(document)
    outlines = [[apply_matrix(m, pt) for pt in shape_outline(s)] for s, m in placed]
    minx, miny, maxx, maxy = compute_bounds(outlines)

    margin = options.margin
    minx -= margin
    miny -= margin
    maxx += margin
    maxy += margin
    w = maxx - minx
    h = maxy - miny
    _require(
        w > 0 and h > 0,
        "Degenerate bounds after margin (width or height is zero). "
        "Set margin > 0 to render collapsed geometry.",
    )

    p = options.precision
    svg_w_attr = f' width="{_fmt(options.width, p)}"' if options.width else ""
    svg_h_attr = f' height="{_fmt(options.height, p)}"' if options.height else ""
    view_box = f"{_fmt(minx, p)} {_fmt(miny, p)} {_fmt(w, p)} {_fmt(h, p)}"

    lines: list[str] = []
    lines.append('<?xml version="1.0" encoding="UTF-8"?>')
    lines.append(
        "<svg xmlns=\"http://www.w3.org/2000/svg\" version=\"1.1\" "
        f"viewBox=\"{view_box}\"{svg_w_attr}{svg_h_attr}>"
    )
    if options.title:
        lines.append(f"  <title>{_escape(options.title)}</title>")
    if options.background and options.background.lower() != "none":
        lines.append(
            f'  <rect x="{_fmt(minx, p)}" y="{_fmt(miny, p)}" '
            f'width="{_fmt(w, p)}" height="{_fmt(h, p)}" '
            f'fill="{_escape(options.background)}" />'
        )

    if options.flip_y:
        # flip about the horizontal center line of the viewBox
        lines.append(
            f'  <g transform="translate(0,{_fmt(miny + maxy, p)}) scale(1,-1)">'
        )
        indent = "    "
    else:
        indent = "  "

    shapes = iter(placed)
    for group in document.groups:
        label = f' id="{_escape(group.name)}"' if group.name else ""
        lines.append(f"{indent}<g{label}>")
        for _ in group.shapes:
            shape, m = next(shapes)
            lines.append(f"{indent}  {_shape_element(shape, m, options)}")
        lines.append(f"{indent}</g>")

    if options.flip_y:
        lines.append("  </g>")
    lines.append("</svg>")

    _ensure_parent_dir(out_path)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
        f.write("\n")
    logger.debug("wrote %d shape(s) to %s", len(placed), out_path)


# -------------------------
# Render options
# -------------------------


def _as_float(x: Any, path: str) -> float:
    _require(
        isinstance(x, (int, float)) and not isinstance(x, bool), f"{path} must be a number"
    )
    return float(x)


def _as_int(x: Any, path: str) -> int:
    _require(
        isinstance(x, int) and not isinstance(x, bool), f"{path} must be an integer"
    )
    return int(x)


def _as_str(x: Any, path: str) -> str:
    _require(isinstance(x, str), f"{path} must be a string")
    return cast(str, x)


def _as_bool(x: Any, path: str) -> bool:
    _require(isinstance(x, bool), f"{path} must be a boolean")
    return cast(bool, x)


def _as_dict(x: Any, path: str) -> dict[str, Any]:
    _require(isinstance(x, dict), f"{path} must be an object")
    return cast(dict[str, Any], x)


def parse_svg_options(obj: dict[str, Any]) -> SvgOptions:
    obj = _as_dict(obj, "root")

    margin = _as_float(obj.get("margin", 0.5), "margin")
    _require(margin >= 0, "margin must be >= 0")
    precision = _as_int(obj.get("precision", 3), "precision")
    _require(0 <= precision <= 10, "precision must be between 0 and 10")
    flip_y = _as_bool(obj.get("flip_y", True), "flip_y")

    width = obj.get("width")
    height = obj.get("height")
    if width is not None:
        width = _as_float(width, "width")
        _require(width > 0, "width must be > 0")
    if height is not None:
        height = _as_float(height, "height")
        _require(height > 0, "height must be > 0")

    stroke_width = _as_float(obj.get("stroke_width", 1.0), "stroke_width")
    _require(stroke_width > 0, "stroke_width must be > 0")

    background = obj.get("background")
    if background is not None:
        background = _as_str(background, "background")
    title = obj.get("title")
    if title is not None:
        title = _as_str(title, "title")

    return SvgOptions(
        margin=margin,
        precision=precision,
        flip_y=flip_y,
        width=width,
        height=height,
        stroke_width=stroke_width,
        background=background,
        title=title,
    )


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        try:
            return cast(dict[str, Any], json.load(f))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e


# -------------------------
# CLI / Help
# -------------------------

HELP_EPILOG = r"""
SCENE FILE SYNTAX

A scene file is zero or more groups separated by blank lines. Each group
holds one or more shapes; each shape has a style line and optional
transforms, one per line.

  group <optional name>
  <optional group transforms>

  unit square <optional name>
  <style> <color>
  <optional shape transforms>

  unit circle <optional name>
  ...

Styles:     path | closed | filled
Colors:     black white gray red green blue yellow orange cyan magenta
            brown pink
Transforms: r <degrees>          rotate
            s <sx> <sy>          scale
            t <tx> <ty>          translate

Shape transforms apply first, in the listed order, followed by the group's
transforms. Everything after the keyword and one or more spaces is the name.

Example

  group wheels
  t 4 0

  unit circle front
  filled black
  s 0.5 0.5

  unit square body
  closed red
  s 6 2
  t -1 0

RENDER OPTIONS (render --config)

  margin: number >= 0 (default 0.5)
  precision: integer 0..10 (default 3)
  flip_y: boolean (default true)
  width / height: number > 0 (optional)
  stroke_width: number > 0 (default 1)
  background: string color (optional)
  title: string (optional)
"""


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="drawing_parsing.py",
        description="Parse, reformat and render shape scene files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_EPILOG,
    )
    p.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging."
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    pf = sub.add_parser(
        "format",
        help="Print a scene file in canonical form.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pf.add_argument("input", help="Path to the scene file.")
    pf.add_argument(
        "output", nargs="?", default=None, help="Where to write (default: stdout)."
    )

    pv = sub.add_parser(
        "validate",
        help="Parse a scene file, check it round-trips and print a summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pv.add_argument("input", help="Path to the scene file.")

    pr = sub.add_parser(
        "render",
        help="Render a scene file to SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pr.add_argument("input", help="Path to the scene file.")
    pr.add_argument("output", help="Path to write the SVG output.")
    pr.add_argument(
        "--config", default=None, help="Path to a JSON file of render options."
    )

    return p


# -------------------------
# Commands
# -------------------------


def cmd_format(input_path: str, output_path: str | None) -> None:
    text = print_document(load_document(input_path))
    if text:
        text += "\n"
    if output_path is None:
        sys.stdout.write(text)
        return
    _ensure_parent_dir(output_path)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(text)


def cmd_validate(input_path: str) -> None:
    doc = load_document(input_path)
    reparsed = parse_document(print_document(doc))
    if reparsed != doc:
        raise GrammarError("printed document does not parse back to the same value")

    shapes = [s for g in doc.groups for s in g.shapes]
    transforms = sum(len(g.transforms) for g in doc.groups) + sum(
        len(s.transforms) for s in shapes
    )
    print(f"groups: {len(doc.groups)}")
    print(f"shapes: {len(shapes)}")
    print(f"transforms: {transforms}")
    for g in doc.groups:
        print(f"  {g.name or '(unnamed)'}: {len(g.shapes)} shape(s)")


def cmd_render(input_path: str, output_path: str, config_path: str | None) -> None:
    options = SvgOptions()
    if config_path is not None:
        options = parse_svg_options(load_json(config_path))
    doc = load_document(input_path)
    write_svg(doc, out_path=output_path, options=options)


def main(argv: list[str] | None = None) -> int:
    ap = build_argparser()
    args = ap.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s"
        )

    try:
        if args.cmd == "format":
            cmd_format(args.input, args.output)
        elif args.cmd == "validate":
            cmd_validate(args.input)
        elif args.cmd == "render":
            cmd_render(args.input, args.output, args.config)
        else:
            raise AssertionError("unreachable")
    except GrammarError as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return 2
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
