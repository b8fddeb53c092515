from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class ESError(Exception):
    """Base class for interpreter errors."""


class ESParseError(ESError):
    """Raised when a script line cannot be loaded."""

    def __init__(self, message: str, *, location: Optional["SourceLocation"] = None, side: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.side = side

    def __str__(self) -> str:
        if self.location is None:
            return self.message
        where = f"{self.location.file}:{self.location.line}"
        if self.side:
            where += f" ({self.side} side)"
        return f"{self.message} at {where}"


class MalformedOperand(ESParseError):
    """Operand text matches no grammar rule."""


class InvalidOperator(ESParseError):
    """Unrecognized one-character operator."""


class OperandRoleViolation(ESParseError):
    """Operand lacks the source/sink capability its position requires."""


@dataclass
class SourceLocation:
    file: str
    line: int
    statement: str


OPERATOR_CHARS = ">?+-*/"
# Characters that can begin an operand; used to tell the short Move form
# ("100>v0;") apart from the canonical "left>OPright;" form.
OPERAND_START_CHARS = "vciorln\\0123456789"


class ScanPhase(Enum):
    LEFT = "left"
    OPERATOR = "operator"
    RIGHT = "right"


@dataclass
class ScannedLine:
    left: str
    operator: str
    right: str
    has_code: bool
    comment: bool = False


class LineScanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.index = 0
        self.phase = ScanPhase.LEFT

    def scan(self) -> ScannedLine:
        left: List[str] = []
        right: List[str] = []
        operator = ""
        text = self.text
        n = len(text)

        while self.index < n:
            ch = text[self.index]

            if self.phase is ScanPhase.LEFT:
                if ch == "/" and self._peek_next() == "/":
                    return ScannedLine("".join(left), "", "", has_code=False, comment=True)
                # A backslash right before an operator character keeps it in the operand.
                escaped = self._previous() == "\\"
                if ch == ">" and not escaped:
                    self.phase = ScanPhase.OPERATOR
                    self._advance()
                    continue
                if ch in OPERATOR_CHARS and not escaped and not (ch == "-" and not left):
                    operator = ch
                    self.phase = ScanPhase.RIGHT
                    self._advance()
                    continue
                left.append(ch)
                self._advance()
                continue

            if self.phase is ScanPhase.OPERATOR:
                if ch == "/" and self._peek_next() == "/":
                    return ScannedLine("".join(left), "", "", has_code=False, comment=True)
                if ch in OPERAND_START_CHARS:
                    # Implicit Move: leave the character for the right operand.
                    operator = ">"
                else:
                    # Unknown characters are kept and rejected once the line proves executable.
                    operator = ch
                    self._advance()
                self.phase = ScanPhase.RIGHT
                continue

            if ch == ";":
                return ScannedLine("".join(left), operator, "".join(right), has_code=True)
            right.append(ch)
            self._advance()

        return ScannedLine("".join(left), operator, "".join(right), has_code=False)

    def _previous(self) -> Optional[str]:
        if self.index > 0:
            return self.text[self.index - 1]
        return None

    def _peek_next(self) -> Optional[str]:
        if self.index + 1 < len(self.text):
            return self.text[self.index + 1]
        return None

    def _advance(self) -> None:
        self.index += 1
