from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from lexer import (
    ESParseError,
    InvalidOperator,
    LineScanner,
    MalformedOperand,
    OperandRoleViolation,
    SourceLocation,
)
from memory import wrap_int64


class OperandKind(Enum):
    STD_INPUT = "StdInput"
    STD_OUTPUT = "StdOutput"
    RAW_OUTPUT = "RawOutput"
    VARIABLE = "Variable"
    CHAR_VARIABLE = "CharVariable"
    CHAR_LITERAL = "CharLiteral"
    NUMBER_LITERAL = "NumberLiteral"
    LINE_NUMBER = "LineNumber"
    NEWLINE_CHAR = "NewlineChar"
    NESTED_VARIABLE = "NestedVariable"
    NESTED_CHAR_VARIABLE = "NestedCharVariable"


SOURCE_KINDS = frozenset(
    {
        OperandKind.STD_INPUT,
        OperandKind.VARIABLE,
        OperandKind.CHAR_VARIABLE,
        OperandKind.CHAR_LITERAL,
        OperandKind.NUMBER_LITERAL,
        OperandKind.LINE_NUMBER,
        OperandKind.NEWLINE_CHAR,
        OperandKind.NESTED_VARIABLE,
        OperandKind.NESTED_CHAR_VARIABLE,
    }
)

SINK_KINDS = frozenset(
    {
        OperandKind.STD_OUTPUT,
        OperandKind.RAW_OUTPUT,
        OperandKind.VARIABLE,
        OperandKind.CHAR_VARIABLE,
        OperandKind.NESTED_VARIABLE,
        OperandKind.NESTED_CHAR_VARIABLE,
    }
)

# Single-letter operands; anything longer starting with these letters is malformed.
SINGLE_LETTER_KINDS = {
    "i": OperandKind.STD_INPUT,
    "o": OperandKind.STD_OUTPUT,
    "r": OperandKind.RAW_OUTPUT,
    "l": OperandKind.LINE_NUMBER,
    "n": OperandKind.NEWLINE_CHAR,
}

DIGITS = "0123456789"


@dataclass(frozen=True)
class Operand:
    kind: OperandKind
    param: int = 0
    chain: Optional[str] = None
    text: str = ""

    @property
    def is_source(self) -> bool:
        return self.kind in SOURCE_KINDS

    @property
    def is_sink(self) -> bool:
        return self.kind in SINK_KINDS


class Operator(Enum):
    MOVE = ">"
    JUMP_IF_POSITIVE = "?"
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"


ARITHMETIC_OPERATORS = frozenset({Operator.ADD, Operator.SUBTRACT, Operator.MULTIPLY, Operator.DIVIDE})

NOOP_OPERAND = Operand(OperandKind.NUMBER_LITERAL)


@dataclass
class Instruction:
    left: Operand
    op: Operator
    right: Operand
    has_code: bool
    source_line: int
    location: SourceLocation


@dataclass
class Program:
    instructions: Tuple[Instruction, ...]
    filename: str

    def __len__(self) -> int:
        return len(self.instructions)

    def fetch(self, line: int) -> Instruction:
        return self.instructions[line - 1]


def is_number(text: str) -> bool:
    """Signed decimal integer: optional '-' at position 0, then at least one digit."""
    digits = text[1:] if text.startswith("-") else text
    return digits != "" and all(ch in DIGITS for ch in digits)


def parse_number(text: str) -> int:
    negative = text.startswith("-")
    value = 0
    for ch in text[1:] if negative else text:
        value = value * 10 + (ord(ch) - ord("0"))
    return -value if negative else value


def is_nested_chain(text: str) -> bool:
    """A run of 'v'/'c' letters followed by exactly one run of decimal digits."""
    index = 0
    while index < len(text) and text[index] in "vc":
        index += 1
    digits = text[index:]
    return digits != "" and all(ch in DIGITS for ch in digits)


def classify(text: str, side: str, location: Optional[SourceLocation] = None) -> Operand:
    if text == "":
        raise MalformedOperand("Empty operand", location=location, side=side)
    first = text[0]
    rest = text[1:]

    if first in "vc":
        direct, nested = (
            (OperandKind.VARIABLE, OperandKind.NESTED_VARIABLE)
            if first == "v"
            else (OperandKind.CHAR_VARIABLE, OperandKind.NESTED_CHAR_VARIABLE)
        )
        if rest != "" and all(ch in DIGITS for ch in rest):
            return Operand(direct, param=parse_number(rest), text=text)
        if is_nested_chain(rest):
            return Operand(nested, chain=rest, text=text)
        label = "variable" if first == "v" else "character variable"
        raise MalformedOperand(f"{label} requires number, got '{rest}'", location=location, side=side)

    if first in SINGLE_LETTER_KINDS:
        kind = SINGLE_LETTER_KINDS[first]
        if len(text) != 1:
            raise MalformedOperand(
                f"{kind.value} opcode must be exactly 1 character, got '{text}'", location=location, side=side
            )
        return Operand(kind, text=text)

    if first == "\\":
        if len(text) != 2:
            raise MalformedOperand(
                f"char opcode must be exactly 2 characters, got '{text}'", location=location, side=side
            )
        code = ord(text[1])
        if code > 0xFF:
            raise MalformedOperand(
                f"char opcode must be a single byte, got '{text[1]}'", location=location, side=side
            )
        return Operand(OperandKind.CHAR_LITERAL, param=code, text=text)

    if is_number(text):
        # Literals wrap to signed 64-bit like every other value.
        return Operand(OperandKind.NUMBER_LITERAL, param=wrap_int64(parse_number(text)), text=text)
    raise MalformedOperand(f"no opcode, number expected, got '{text}'", location=location, side=side)


def _check_roles(op: Operator, left: Operand, right: Operand, location: SourceLocation) -> None:
    if not left.is_source:
        raise OperandRoleViolation(
            f"input expected, got output only operand '{left.text}'", location=location, side="left"
        )
    if op is Operator.JUMP_IF_POSITIVE:
        if not right.is_source:
            raise OperandRoleViolation(
                f"input expected, got output only operand '{right.text}'", location=location, side="right"
            )
    elif op in ARITHMETIC_OPERATORS:
        if not (right.is_source and right.is_sink):
            raise OperandRoleViolation(
                f"input AND output expected, got '{right.text}'", location=location, side="right"
            )
    elif not right.is_sink:
        raise OperandRoleViolation(
            f"output expected, got input only operand '{right.text}'", location=location, side="right"
        )


class Parser:
    def __init__(
        self,
        source_lines: Iterable[str],
        filename: str,
        *,
        strict: bool = True,
        debug_level: int = 0,
        debug_sink: Optional[Callable[[str], None]] = None,
    ):
        self.source_lines = list(source_lines)
        self.filename = filename
        self.strict = strict
        self.debug_level = debug_level
        self.debug_sink = debug_sink or (lambda text: None)
        self.diagnostics: List[ESParseError] = []

    def parse(self) -> Program:
        if self.debug_level > 1:
            self.debug_sink(f"Line amount: {len(self.source_lines)}")
        instructions: List[Instruction] = []
        for index, text in enumerate(self.source_lines):
            if self.debug_level > 2:
                self.debug_sink(f"{index} {text}")
            try:
                instruction = self.parse_line(text, index)
            except ESParseError as error:
                if self.strict:
                    raise
                self.diagnostics.append(error)
                self.debug_sink(f"ParseError: {error} (line skipped)")
                instruction = self._noop(index, text)
            instructions.append(instruction)
        return Program(instructions=tuple(instructions), filename=self.filename)

    def parse_line(self, text: str, line_index: int) -> Instruction:
        location = SourceLocation(file=self.filename, line=line_index + 1, statement=text)
        scanned = LineScanner(text).scan()
        if not scanned.has_code:
            if scanned.comment and self.debug_level > 1:
                self.debug_sink(f"line {line_index + 1}: comment")
            return self._noop(line_index, text)

        try:
            op = Operator(scanned.operator)
        except ValueError:
            raise InvalidOperator(f"Invalid command '{scanned.operator}'", location=location) from None

        left = classify(scanned.left, "left", location)
        right = classify(scanned.right, "right", location)
        _check_roles(op, left, right, location)
        return Instruction(
            left=left, op=op, right=right, has_code=True, source_line=line_index + 1, location=location
        )

    def _noop(self, line_index: int, text: str) -> Instruction:
        return Instruction(
            left=NOOP_OPERAND,
            op=Operator.MOVE,
            right=NOOP_OPERAND,
            has_code=False,
            source_line=line_index + 1,
            location=SourceLocation(file=self.filename, line=line_index + 1, statement=text),
        )
