"""Intermediate representation consumed by the code generators."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class Loc:
    """A position in a source file."""

    input_path: str
    line_number: int
    line_offset: int

    def __str__(self) -> str:
        return f"{self.input_path}:{self.line_number}:{self.line_offset}"


class Binop(enum.Enum):
    """Binary operators, keyed by their source symbol."""

    BIT_OR = "|"
    BIT_AND = "&"
    BIT_SHL = "<<"
    BIT_SHR = ">>"
    PLUS = "+"
    MINUS = "-"
    MOD = "%"
    DIV = "/"
    MULT = "*"
    LESS = "<"
    GREATER = ">"
    EQUAL = "=="
    NOT_EQUAL = "!="
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="


# Operands ------------------------------------------------------------------


@dataclass(frozen=True)
class Deref:
    """The value pointed to by the auto variable at ``index``."""

    index: int


@dataclass(frozen=True)
class RefAutoVar:
    """The address of the auto variable at ``index``."""

    index: int


@dataclass(frozen=True)
class RefExternal:
    """The address of the external symbol ``name``."""

    name: str


@dataclass(frozen=True)
class External:
    """The value stored in the external symbol ``name``."""

    name: str


@dataclass(frozen=True)
class AutoVar:
    """The value of the auto variable at ``index`` (1-based)."""

    index: int


@dataclass(frozen=True)
class Literal:
    """An integer constant."""

    value: int


@dataclass(frozen=True)
class DataOffset:
    """The address of byte ``offset`` in the data section."""

    offset: int


@dataclass(frozen=True)
class Bogus:
    """A placeholder operand that must never reach a code generator."""


Arg = Union[Deref, RefAutoVar, RefExternal, External, AutoVar, Literal, DataOffset, Bogus]


# Operations ----------------------------------------------------------------


@dataclass(frozen=True)
class AutoAssign:
    index: int
    arg: Arg


@dataclass(frozen=True)
class ExternalAssign:
    name: str
    arg: Arg


@dataclass(frozen=True)
class Store:
    """Write ``arg`` to the address held in auto variable ``index``."""

    index: int
    arg: Arg


@dataclass(frozen=True)
class Negate:
    result: int
    arg: Arg


@dataclass(frozen=True)
class UnaryNot:
    result: int
    arg: Arg


@dataclass(frozen=True)
class BinaryOp:
    binop: Binop
    index: int
    lhs: Arg
    rhs: Arg


@dataclass(frozen=True)
class Funcall:
    result: int
    fun: Arg
    args: Tuple[Arg, ...] = ()


@dataclass(frozen=True)
class Asm:
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Jmp:
    """Jump to the instruction at position ``addr`` within the function."""

    addr: int


@dataclass(frozen=True)
class JmpIfNot:
    addr: int
    arg: Arg


@dataclass(frozen=True)
class Return:
    arg: Optional[Arg] = None


Op = Union[
    AutoAssign,
    ExternalAssign,
    Store,
    Negate,
    UnaryNot,
    BinaryOp,
    Funcall,
    Asm,
    Jmp,
    JmpIfNot,
    Return,
]


@dataclass(frozen=True)
class Instruction:
    """An operation together with where it came from."""

    opcode: Op
    loc: Loc


@dataclass(frozen=True)
class Func:
    name: str
    name_loc: Loc
    params_count: int
    auto_vars_count: int
    body: Tuple[Instruction, ...] = ()


# Global initialisers -------------------------------------------------------


@dataclass(frozen=True)
class ImmLiteral:
    value: int


@dataclass(frozen=True)
class ImmName:
    name: str


@dataclass(frozen=True)
class ImmDataOffset:
    offset: int


ImmediateValue = Union[ImmLiteral, ImmName, ImmDataOffset]


@dataclass(frozen=True)
class Global:
    name: str
    values: Tuple[ImmediateValue, ...] = ()
    is_vec: bool = False
    minimum_size: int = 0


@dataclass
class Program:
    """Everything a code generator needs to emit a complete image."""

    funcs: list[Func] = field(default_factory=list)
    extrns: list[str] = field(default_factory=list)
    globals: list[Global] = field(default_factory=list)
    data: bytes = b""

    def has_func(self, name: str) -> bool:
        return any(func.name == name for func in self.funcs)

    def has_global(self, name: str) -> bool:
        return any(glob.name == name for glob in self.globals)


# Errors --------------------------------------------------------------------


class CodegenError(Exception):
    """Base class for failures during code generation."""


class MissingFeatureError(CodegenError):
    """Raised when a target does not support a construct."""

    def __init__(self, loc: Loc, message: str) -> None:
        self.loc = loc
        self.message = message
        super().__init__(f"{loc}: TODO: {message}")


class LinkError(CodegenError):
    """Raised when symbols cannot be resolved into a final image."""