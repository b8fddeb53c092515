"""Variable memory for ESScript programs.

Two flat, zero-initialized regions live for the whole run of an interpreter:

    vars   signed 64-bit cells, addressed by ``v<index>``
    cvars  unsigned 8-bit cells, addressed by ``c<index>``

Every access is bounds-checked against the region it touches. Nested operands
(``vc5``, ``cvv12``) compute their index by dereferencing through these
regions on every evaluation; see :func:`resolve_chain`.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from numpy.typing import NDArray

from lexer import ESError, SourceLocation


DEFAULT_VARIABLES = 256
DEFAULT_CHAR_VARIABLES = 32768

INT64_MIN = -(1 << 63)
INT64_MASK = (1 << 64) - 1


class ESRuntimeError(ESError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


class UnclampedAccess(ESRuntimeError):
    """An index fell outside its memory region."""


class DivideByZero(ESRuntimeError):
    """Integer division with a zero divisor."""


class InvalidInput(ESRuntimeError):
    """Standard input supplied a token that is not an integer."""


def wrap_int64(value: int) -> int:
    value &= INT64_MASK
    return value + 2 * INT64_MIN if value >= -INT64_MIN else value


@dataclass
class Memory:
    variables: NDArray[np.int64]
    char_variables: NDArray[np.uint8]

    @classmethod
    def allocate(cls, variables: int = DEFAULT_VARIABLES, char_variables: int = DEFAULT_CHAR_VARIABLES) -> "Memory":
        if variables < 0 or char_variables < 0:
            raise ValueError("memory sizes must be non-negative")
        return cls(
            variables=np.zeros(variables, dtype=np.int64),
            char_variables=np.zeros(char_variables, dtype=np.uint8),
        )

    @property
    def var_count(self) -> int:
        return int(self.variables.shape[0])

    @property
    def cvar_count(self) -> int:
        return int(self.char_variables.shape[0])

    def _check_var(self, index: int, location: Optional[SourceLocation], rule: str) -> None:
        if index < 0 or index >= self.var_count:
            raise UnclampedAccess(
                f"unclamped variable access: index {index} outside [0, {self.var_count})",
                location=location,
                rule=rule,
            )

    def _check_cvar(self, index: int, location: Optional[SourceLocation], rule: str) -> None:
        if index < 0 or index >= self.cvar_count:
            raise UnclampedAccess(
                f"unclamped character variable access: index {index} outside [0, {self.cvar_count})",
                location=location,
                rule=rule,
            )

    def read_var(self, index: int, location: Optional[SourceLocation] = None) -> int:
        self._check_var(index, location, "VAR")
        return int(self.variables[index])

    def write_var(self, index: int, value: int, location: Optional[SourceLocation] = None) -> None:
        self._check_var(index, location, "VAR")
        self.variables[index] = wrap_int64(value)

    def read_cvar(self, index: int, location: Optional[SourceLocation] = None) -> int:
        self._check_cvar(index, location, "CVAR")
        return int(self.char_variables[index])

    def write_cvar(self, index: int, value: int, location: Optional[SourceLocation] = None) -> None:
        self._check_cvar(index, location, "CVAR")
        self.char_variables[index] = value & 0xFF

    def snapshot(self) -> Dict[str, int]:
        # Only non-zero cells; the regions are mostly empty.
        cells: Dict[str, int] = {}
        for index in np.flatnonzero(self.variables):
            cells[f"v{int(index)}"] = int(self.variables[index])
        for index in np.flatnonzero(self.char_variables):
            cells[f"c{int(index)}"] = int(self.char_variables[index])
        return cells


def resolve_chain(memory: Memory, chain: str, location: Optional[SourceLocation] = None) -> int:
    """Compute the index named by a nested chain such as ``vc5``.

    The decimal suffix is the starting value. Prefix letters are applied from
    the one nearest the digits outwards: ``c`` replaces the value with
    ``cvars[value]`` and ``v`` with ``vars[value]``. So ``vc5`` is
    ``vars[cvars[5]]``. Each step is bounds-checked; nothing is cached.
    """
    split = 0
    while split < len(chain) and chain[split] in "vc":
        split += 1
    prefix, digits = chain[:split], chain[split:]
    value = int(digits)

    for letter in reversed(prefix):
        if letter == "c":
            if value < 0 or value >= memory.cvar_count:
                raise UnclampedAccess(
                    f"nested value parser: unclamped access to c{value} in '{chain}'",
                    location=location,
                    rule="NEST",
                )
            value = int(memory.char_variables[value])
        else:
            if value < 0 or value >= memory.var_count:
                raise UnclampedAccess(
                    f"nested value parser: unclamped access to v{value} in '{chain}'",
                    location=location,
                    rule="NEST",
                )
            value = int(memory.variables[value])
    return value
