"""OpenQASM 2.0 subset codec.

Only what the engine itself can represent is accepted: `qreg`/`creg`
declarations, gate applications from the gate vocabulary, `measure` and
`barrier` (ignored). Parameters may be plain numbers or simple expressions
over `pi`.
"""

from __future__ import annotations

import ast
import logging
import math
import operator
import re
from pathlib import Path
from typing import TYPE_CHECKING

from qbatch_engine.framework.errors import ValidationError
from qbatch_engine.framework.model import Circuit, Gate

from .gates import check_gate

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

HEADER = 'OPENQASM 2.0;\ninclude "qelib1.inc";'

_REGISTER = re.compile(r"^(qreg|creg)\s+([A-Za-z_]\w*)\s*\[\s*(\d+)\s*\]$")
_MEASURE = re.compile(
    r"^measure\s+([A-Za-z_]\w*)\s*\[\s*(\d+)\s*\]\s*->\s*([A-Za-z_]\w*)\s*\[\s*(\d+)\s*\]$"
)
_GATE = re.compile(r"^([A-Za-z_]\w*)\s*(?:\((.*)\))?\s+(.+)$")
_ARGUMENT = re.compile(r"^([A-Za-z_]\w*)\s*\[\s*(\d+)\s*\]$")

MAX_EXPONENT = 64.0


def _power(base: float, exponent: float) -> float:
    if abs(exponent) > MAX_EXPONENT:
        message = f"exponent {exponent:g} exceeds {MAX_EXPONENT:g}"
        raise ValueError(message)
    if base < 0 and not exponent.is_integer():
        message = f"negative base {base:g} with fractional exponent {exponent:g}"
        raise ValueError(message)
    return base**exponent


_BINARY_OPS: dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: _power,
}
_UNARY_OPS: dict[type, Callable[[float], float]] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


class QasmParseError(ValidationError):
    """Malformed assembly text.

    Attributes:
        line: 1-based number of the offending line.

    """

    default_code = "QASM_PARSE_ERROR"

    def __init__(self, message: str, line: int) -> None:
        super().__init__(
            f"line {line}: {message}",
            suggested_actions=("fix the assembly text and import it again",),
        )
        self.line = line


# =============================================================================
# Serialization
# =============================================================================


def _format_param(value: float) -> str:
    return repr(float(value))


def _format_gate(gate: Gate) -> str:
    if gate.type == "measure":
        (qubit,) = gate.qubits
        return f"measure q[{qubit}] -> c[{qubit}];"
    params = f"({','.join(_format_param(p) for p in gate.params)})" if gate.params else ""
    targets = ",".join(f"q[{q}]" for q in gate.qubits)
    return f"{gate.type}{params} {targets};"


def dumps(circuit: Circuit) -> str:
    """Serialize a circuit to assembly text."""
    lines = [HEADER, f"qreg q[{circuit.qubit_count}];"]
    if any(gate.type == "measure" for gate in circuit.gates):
        lines.append(f"creg c[{circuit.qubit_count}];")
    lines.extend(_format_gate(gate) for gate in circuit.gates)
    return "\n".join(lines) + "\n"


def dump(circuit: Circuit, path: str | Path) -> None:
    Path(path).write_text(dumps(circuit), encoding="utf-8")


# =============================================================================
# Parsing
# =============================================================================


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return float(node.value)
    if isinstance(node, ast.Name) and node.id == "pi":
        return math.pi
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    message = f"unsupported expression element {ast.dump(node)}"
    raise ValueError(message)


def parse_parameter(text: str) -> float:
    """Evaluate a parameter expression such as `-pi/2` or `0.25`.

    Raises:
        ValueError: If the expression uses anything but numbers, `pi` and
            arithmetic operators, or does not evaluate to a finite number.

    """
    try:
        tree = ast.parse(text.strip(), mode="eval")
    except (SyntaxError, RecursionError) as e:
        message = f"invalid parameter expression {text!r}"
        raise ValueError(message) from e
    try:
        value = _evaluate(tree)
    except (ArithmeticError, RecursionError) as e:
        message = f"cannot evaluate parameter expression {text!r}: {e}"
        raise ValueError(message) from e
    if not math.isfinite(value):
        message = f"parameter expression {text!r} is not a finite number"
        raise ValueError(message)
    return value


class _Parser:
    def __init__(self) -> None:
        self.qregs: dict[str, tuple[int, int]] = {}
        self.cregs: dict[str, int] = {}
        self.width = 0
        self.gates: list[Gate] = []

    def _qubit(self, name: str, index: str, line: int) -> int:
        if name not in self.qregs:
            message = f"unknown quantum register {name!r}"
            raise QasmParseError(message, line)
        offset, size = self.qregs[name]
        position = int(index)
        if position >= size:
            message = f"index {position} is out of range for {name}[{size}]"
            raise QasmParseError(message, line)
        return offset + position

    def statement(self, text: str, line: int) -> None:
        head = text.split(maxsplit=1)[0]
        if head in {"OPENQASM", "include", "barrier"}:
            return

        register = _REGISTER.match(text)
        if register:
            kind, name, size = register.group(1), register.group(2), int(register.group(3))
            if size < 1:
                message = f"register {name} must hold at least one bit"
                raise QasmParseError(message, line)
            if name in self.qregs or name in self.cregs:
                message = f"register {name!r} is declared twice"
                raise QasmParseError(message, line)
            if kind == "qreg":
                self.qregs[name] = (self.width, size)
                self.width += size
            else:
                self.cregs[name] = size
            return

        measure = _MEASURE.match(text)
        if measure:
            qubit = self._qubit(measure.group(1), measure.group(2), line)
            creg, bit = measure.group(3), int(measure.group(4))
            if creg not in self.cregs or bit >= self.cregs[creg]:
                message = f"unknown classical bit {creg}[{bit}]"
                raise QasmParseError(message, line)
            self.gates.append(Gate.of("measure", qubit))
            return

        gate = _GATE.match(text)
        if gate is None:
            message = f"cannot parse statement {text!r}"
            raise QasmParseError(message, line)
        gate_type, raw_params, raw_args = gate.groups()
        try:
            params = tuple(
                parse_parameter(p) for p in raw_params.split(",")
            ) if raw_params and raw_params.strip() else ()
        except ValueError as e:
            raise QasmParseError(str(e), line) from e

        qubits = []
        for argument in raw_args.split(","):
            match = _ARGUMENT.match(argument.strip())
            if match is None:
                message = f"expected an indexed qubit, got {argument.strip()!r}"
                raise QasmParseError(message, line)
            qubits.append(self._qubit(match.group(1), match.group(2), line))

        try:
            parsed = Gate(type=gate_type, qubits=tuple(qubits), params=params)
            check_gate(parsed)
        except ValidationError as e:
            raise QasmParseError(e.message, line) from e
        except ValueError as e:
            raise QasmParseError(str(e), line) from e
        self.gates.append(parsed)


def loads(text: str) -> Circuit:
    """Parse assembly text into a circuit.

    Raises:
        QasmParseError: On any syntax or semantic error.

    """
    parser = _Parser()
    last_line = 0
    for number, raw in enumerate(text.splitlines(), start=1):
        last_line = number
        content = raw.split("//", 1)[0].strip()
        if not content:
            continue
        statements = content.split(";")
        if statements[-1].strip():
            message = f"missing ';' after {statements[-1].strip()!r}"
            raise QasmParseError(message, number)
        for statement in statements[:-1]:
            if statement.strip():
                parser.statement(statement.strip(), number)

    if parser.width == 0:
        message = "no quantum register declared"
        raise QasmParseError(message, max(last_line, 1))

    logger.debug(
        "parsed assembly",
        extra={"qubits": parser.width, "gates": len(parser.gates)},
    )
    return Circuit(qubit_count=parser.width, gates=tuple(parser.gates))


def load(path: str | Path) -> Circuit:
    return loads(Path(path).read_text(encoding="utf-8"))
