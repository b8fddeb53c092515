from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

from lexer import ESParseError, SourceLocation
from memory import (
    DEFAULT_CHAR_VARIABLES,
    DEFAULT_VARIABLES,
    DivideByZero,
    ESRuntimeError,
    InvalidInput,
    Memory,
    resolve_chain,
    wrap_int64,
)
from parser import (
    Instruction,
    Operand,
    OperandKind,
    Operator,
    Parser,
    Program,
    is_number,
    parse_number,
)


NEWLINE_CODE = ord("\n")
DEFAULT_PROMPT = "< "
# Number of executed steps and I/O events kept for tracebacks.
DEFAULT_HISTORY = 1024


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    memory_snapshot: Optional[Dict[str, int]]
    step_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        location: Optional[SourceLocation],
        statement: Optional[str],
        step_record: Optional[Dict[str, Any]] = None,
        memory_snapshot: Optional[Dict[str, int]] = None,
    ) -> StateEntry:
        record = {} if step_record is None else step_record
        if "from_state_id" not in record:
            record["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        record["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            source_location=location,
            statement=statement,
            memory_snapshot=memory_snapshot,
            step_record=record,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


def _stdout_sink(data: bytes) -> None:
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


def _stderr_sink(text: str) -> None:
    print(text, file=sys.stderr)


def _truncating_div(dividend: int, divisor: int) -> int:
    quotient = abs(dividend) // abs(divisor)
    return -quotient if (dividend < 0) != (divisor < 0) else quotient


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        variables: int = DEFAULT_VARIABLES,
        char_variables: int = DEFAULT_CHAR_VARIABLES,
        debug_level: int = 0,
        entry_line: int = 1,
        strict: bool = True,
        prompt: str = DEFAULT_PROMPT,
        history: int = DEFAULT_HISTORY,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[bytes], None]] = None,
        debug_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self.filename = filename
        self.verbose = verbose
        self.debug_level = debug_level
        self.entry_line = entry_line
        self.strict = strict
        self.prompt = prompt
        self.input_provider = input_provider or sys.stdin.readline
        self.output_sink = output_sink or _stdout_sink
        self.debug_sink = debug_sink or _stderr_sink

        self._debug("Allocating memory...")
        self.memory = Memory.allocate(variables, char_variables)
        self.logger = StateLogger(verbose=verbose, history=history)
        self.logger.record(location=None, statement="<seed>", step_record={"rule": "SEED"})
        self.io_log: Deque[Dict[str, Any]] = deque(maxlen=history)
        self.program: Optional[Program] = None
        self.diagnostics: List[ESParseError] = []
        self.runtime_errors: List[ESRuntimeError] = []
        self.pc = entry_line
        self._pending_input: Deque[str] = deque()

    def _debug(self, text: str, level: int = 1) -> None:
        if self.debug_level > level:
            self.debug_sink(text)

    def parse(self) -> Program:
        self._debug("Parsing lines...")
        # Split on '\n' only so every line, including a trailing empty one, keeps its address.
        parser = Parser(
            self.source.split("\n"),
            self.filename,
            strict=self.strict,
            debug_level=self.debug_level,
            debug_sink=self.debug_sink,
        )
        program = parser.parse()
        self.diagnostics = parser.diagnostics
        return program

    def load(self) -> Program:
        if self.program is None:
            self.program = self.parse()
        return self.program

    def run(self) -> None:
        program = self.load()
        self._debug("Beginning execution")
        try:
            self._execute(program)
        except ESRuntimeError as error:
            last = self.logger.last_entry()
            if last is not None:
                error.step_index = last.step_index
            raise
        except Exception as exc:
            # Surface unexpected Python-level failures as runtime errors so the
            # CLI can format them with a traceback.
            last = self.logger.last_entry()
            wrapped = ESRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.source_location if last else None,
                rule="internal",
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc

    def _execute(self, program: Program) -> None:
        pc = self.entry_line
        length = len(program)
        while 1 <= pc <= length:
            self.pc = pc
            instruction = program.fetch(pc)
            if not instruction.has_code:
                pc += 1
                continue
            self._log_step(instruction)
            try:
                target = self.step(instruction)
            except ESRuntimeError as error:
                if self.strict:
                    raise
                self.runtime_errors.append(error)
                self.debug_sink(f"{error.__class__.__name__}: {error.message} (line {instruction.source_line} skipped)")
                target = None
            pc = pc + 1 if target is None else target
        self.pc = pc
        self._debug("exit: Ran out of lines or line underflow")

    def step(self, instruction: Instruction) -> Optional[int]:
        """Execute one instruction; returns the jump target when control transfers."""
        op = instruction.op
        if op is Operator.MOVE:
            value = self.read_operand(instruction.left, instruction)
            self.write_operand(instruction.right, value, instruction)
            return None

        a = self.read_operand(instruction.left, instruction)
        b = self.read_operand(instruction.right, instruction)
        if op is Operator.JUMP_IF_POSITIVE:
            return b if a > 0 else None

        if op is Operator.ADD:
            result = b + a
        elif op is Operator.SUBTRACT:
            result = b - a
        elif op is Operator.MULTIPLY:
            result = b * a
        elif op is Operator.DIVIDE:
            if a == 0:
                raise DivideByZero("integer divide by zero", location=instruction.location, rule="DIVIDE")
            result = _truncating_div(b, a)
        else:
            raise ESRuntimeError(f"Unhandled operator {op}", location=instruction.location, rule="internal")
        self.write_operand(instruction.right, wrap_int64(result), instruction)
        return None

    def read_operand(self, operand: Operand, instruction: Instruction) -> int:
        kind = operand.kind
        location = instruction.location
        if kind is OperandKind.STD_INPUT:
            return self._read_input(location)
        if kind is OperandKind.VARIABLE:
            return self.memory.read_var(operand.param, location)
        if kind is OperandKind.CHAR_VARIABLE:
            return self.memory.read_cvar(operand.param, location)
        if kind is OperandKind.CHAR_LITERAL or kind is OperandKind.NUMBER_LITERAL:
            return operand.param
        if kind is OperandKind.LINE_NUMBER:
            return instruction.source_line
        if kind is OperandKind.NEWLINE_CHAR:
            return NEWLINE_CODE
        if kind is OperandKind.NESTED_VARIABLE:
            index = resolve_chain(self.memory, operand.chain or "", location)
            return self.memory.read_var(index, location)
        if kind is OperandKind.NESTED_CHAR_VARIABLE:
            index = resolve_chain(self.memory, operand.chain or "", location)
            return self.memory.read_cvar(index, location)
        raise ESRuntimeError(f"{kind.value} operand cannot be read", location=location, rule="READ")

    def write_operand(self, operand: Operand, value: int, instruction: Instruction) -> None:
        kind = operand.kind
        location = instruction.location
        if kind is OperandKind.STD_OUTPUT:
            self.output_sink(f"> {value}\n".encode("utf-8"))
            self.io_log.append({"event": "OUTPUT", "value": value})
        elif kind is OperandKind.RAW_OUTPUT:
            byte = value & 0xFF
            self.output_sink(bytes([byte]))
            self.io_log.append({"event": "RAW", "value": byte})
        elif kind is OperandKind.VARIABLE:
            self.memory.write_var(operand.param, value, location)
        elif kind is OperandKind.CHAR_VARIABLE:
            self.memory.write_cvar(operand.param, value, location)
        elif kind is OperandKind.NESTED_VARIABLE:
            index = resolve_chain(self.memory, operand.chain or "", location)
            self.memory.write_var(index, value, location)
        elif kind is OperandKind.NESTED_CHAR_VARIABLE:
            index = resolve_chain(self.memory, operand.chain or "", location)
            self.memory.write_cvar(index, value, location)
        else:
            raise ESRuntimeError(f"{kind.value} operand cannot be written", location=location, rule="WRITE")

    def _read_input(self, location: SourceLocation) -> int:
        if self.prompt:
            self.output_sink(self.prompt.encode("utf-8"))
        while not self._pending_input:
            try:
                line = self.input_provider()
            except EOFError:
                line = ""
            if line == "":
                # End of input reads as zero.
                self.io_log.append({"event": "INPUT", "value": 0, "eof": True})
                return 0
            self._pending_input.extend(line.split())
        token = self._pending_input.popleft()
        text = token[1:] if token.startswith("+") else token
        if not is_number(text):
            raise InvalidInput(f"expected an integer on standard input, got '{token}'", location=location, rule="INPUT")
        value = wrap_int64(parse_number(text))
        self.io_log.append({"event": "INPUT", "value": value})
        return value

    def _log_step(self, instruction: Instruction) -> None:
        location = instruction.location
        snapshot = self.memory.snapshot() if self.verbose else None
        entry = self.logger.record(
            location=location,
            statement=location.statement,
            memory_snapshot=snapshot,
            step_record={"rule": instruction.op.name, "line": instruction.source_line},
        )
        self._debug(f"step {entry.step_index} line {instruction.source_line}: {location.statement}", level=2)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def format_text(self, error: ESRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        location = error.location
        entry = self.interpreter.logger.last_entry()
        if location is None and entry is not None:
            location = entry.source_location
        if location is not None:
            lines.append(f"  File \"{location.file}\", line {location.line}, in <program>")
            if location.statement:
                lines.append(f"    {location.statement}")
        else:
            lines.append("  <unknown location> in <program>")
        if entry is not None:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.memory_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.memory_snapshot.items())
                lines.append(f"    Memory snapshot: {snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: ESRuntimeError) -> str:
        entry = self.interpreter.logger.last_entry()
        frame: Dict[str, Any] = {"frame_index": 0, "name": "<program>"}
        location = error.location or (entry.source_location if entry else None)
        if location is not None:
            frame["source_location"] = {
                "file": location.file,
                "line": location.line,
                "statement": location.statement,
            }
        if entry is not None:
            frame["state_id"] = entry.state_id
            frame["step_index"] = entry.step_index
            if entry.memory_snapshot is not None:
                frame["memory_snapshot"] = entry.memory_snapshot
            if entry.step_record is not None:
                frame["step_record"] = entry.step_record
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": [frame],
        }
        return json.dumps(data, indent=2)
