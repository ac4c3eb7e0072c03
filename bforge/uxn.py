"""Code generator for the Uxn virtual machine.

Memory layout of the produced ROM (loaded at 0x0100):

* zero page ``0x00`` holds the stack pointer, ``0x02`` the base pointer and
  ``0x04``-``0xff`` the function arguments (the first one doubles as the
  return value);
* the ROM holds the entry code, then the functions, the intrinsics, the data
  section and the globals;
* the remaining memory is a stack growing down from the top of the address
  space. Return addresses live on Uxn's own return stack.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Optional

from bforge.ir import (
    Arg,
    Asm,
    AutoAssign,
    AutoVar,
    BinaryOp,
    Binop,
    Bogus,
    CodegenError,
    DataOffset,
    Deref,
    External,
    ExternalAssign,
    Func,
    Funcall,
    Global,
    ImmDataOffset,
    ImmLiteral,
    ImmName,
    Jmp,
    JmpIfNot,
    Literal,
    LinkError,
    MissingFeatureError,
    Negate,
    Program,
    RefAutoVar,
    RefExternal,
    Return,
    Store,
    UnaryNot,
)
from bforge.uxn_ops import UxnOp

__all__ = ["PatchKind", "Patch", "UxnAssembler", "generate_program"]

SP = 0
BP = 2
FIRST_ARG = 4
MAX_ARGS = (256 - FIRST_ARG) // 2
ROM_START = 0x100


class PatchKind(enum.Enum):
    """Which byte of a label reference a patch fills in."""

    UPPER_ABSOLUTE = enum.auto()
    LOWER_ABSOLUTE = enum.auto()
    UPPER_RELATIVE = enum.auto()
    LOWER_RELATIVE = enum.auto()


@dataclass(frozen=True)
class Patch:
    """A byte at ``addr`` to be filled in once ``label`` is resolved."""

    kind: PatchKind
    label: int
    addr: int
    offset: int


@dataclass
class UxnAssembler:
    """Accumulates ROM bytes and resolves label references.

    Label 0 is always the start of the data section.
    """

    output: bytearray = field(default_factory=bytearray)
    resolved_addresses: list[int] = field(default_factory=list)
    named_labels: dict[str, int] = field(default_factory=dict)
    patches: list[Patch] = field(default_factory=list)
    data_section_label: int = field(init=False)

    def __post_init__(self) -> None:
        self.data_section_label = self.create_label()

    # Labels -------------------------------------------------------------

    def create_label(self) -> int:
        """Allocate a new, not yet linked, label."""
        self.resolved_addresses.append(0)
        return len(self.resolved_addresses) - 1

    def label_by_name(self, name: str) -> int:
        """Return the label for symbol ``name``, creating it if needed."""
        label = self.named_labels.get(name)
        if label is None:
            label = self.create_label()
            self.named_labels[name] = label
        return label

    def link_label(self, label: int, addr: int) -> None:
        """Resolve ``label`` to the ROM offset ``addr``."""
        self.resolved_addresses[label] = addr & 0xFFFF

    # Emission -----------------------------------------------------------

    def write_op(self, op: UxnOp) -> None:
        self.output.append(int(op))

    def write_byte(self, byte: int) -> None:
        self.output.append(byte)

    def write_short(self, value: int) -> None:
        """Append a 16-bit value, big-endian."""
        value &= 0xFFFF
        self.output.append(value >> 8)
        self.output.append(value & 0xFF)

    def write_lit(self, value: int) -> None:
        self.write_op(UxnOp.LIT)
        self.write_byte(value & 0xFF)

    def write_lit2(self, value: int) -> None:
        self.write_op(UxnOp.LIT2)
        self.write_short(value)

    def write_lit_ldz2(self, zp: int) -> None:
        self.write_lit(zp)
        self.write_op(UxnOp.LDZ2)

    def write_lit_stz2(self, zp: int) -> None:
        self.write_lit(zp)
        self.write_op(UxnOp.STZ2)

    def _write_label(self, label: int, offset: int, kinds: tuple[PatchKind, PatchKind]) -> None:
        for kind in kinds:
            self.patches.append(Patch(kind, label, len(self.output) & 0xFFFF, offset & 0xFFFF))
            self.write_byte(0xFF)

    def write_label_rel(self, label: int, offset: int = 0) -> None:
        """Append a placeholder for a PC-relative reference to ``label``."""
        self._write_label(label, offset, (PatchKind.UPPER_RELATIVE, PatchKind.LOWER_RELATIVE))

    def write_label_abs(self, label: int, offset: int = 0) -> None:
        """Append a placeholder for the absolute address of ``label``."""
        self._write_label(label, offset, (PatchKind.UPPER_ABSOLUTE, PatchKind.LOWER_ABSOLUTE))

    def apply_patches(self) -> None:
        """Fill every label reference in with its resolved address."""
        for patch in self.patches:
            addr = self.resolved_addresses[patch.label]
            if addr == 0:
                for name, label in self.named_labels.items():
                    if label == patch.label:
                        raise LinkError(f"Label '{name}' was never linked")
                raise LinkError(
                    f"Label #{patch.label} was never linked (error in the uxn codegen)"
                )
            target = (addr + patch.offset) & 0xFFFF
            if patch.kind is PatchKind.UPPER_ABSOLUTE:
                byte = ((target + ROM_START) & 0xFFFF) >> 8
            elif patch.kind is PatchKind.LOWER_ABSOLUTE:
                byte = (target + ROM_START) & 0xFF
            elif patch.kind is PatchKind.UPPER_RELATIVE:
                byte = ((target - patch.addr - 2) & 0xFFFF) >> 8
            else:
                byte = (target - patch.addr - 1) & 0xFF
            self.output[patch.addr] = byte

    # Operands -----------------------------------------------------------

    def _auto_address(self, index: int) -> None:
        self.write_lit_ldz2(BP)
        self.write_lit2(index * 2)
        self.write_op(UxnOp.SUB2)

    def _load_arg(self, arg: Arg) -> None:
        if isinstance(arg, Deref):
            self._auto_address(arg.index)
            self.write_op(UxnOp.LDA2)
            self.write_op(UxnOp.LDA2)
        elif isinstance(arg, External):
            self.write_op(UxnOp.LIT2)
            self.write_label_abs(self.label_by_name(arg.name), 0)
            self.write_op(UxnOp.LDA2)
        elif isinstance(arg, AutoVar):
            self._auto_address(arg.index)
            self.write_op(UxnOp.LDA2)
        elif isinstance(arg, Literal):
            self.write_lit2(arg.value)
        elif isinstance(arg, DataOffset):
            self.write_op(UxnOp.LIT2)
            self.write_label_abs(self.data_section_label, 0)
            self.write_lit2(arg.offset)
            self.write_op(UxnOp.ADD2)
        elif isinstance(arg, RefAutoVar):
            self._auto_address(arg.index)
        elif isinstance(arg, RefExternal):
            self.write_op(UxnOp.LIT2)
            self.write_label_abs(self.label_by_name(arg.name), 0)
        elif isinstance(arg, Bogus):
            raise CodegenError("bogus operand reached the uxn code generator")
        else:
            raise CodegenError(f"unknown operand {arg!r}")

    def _store_auto(self, index: int) -> None:
        self._auto_address(index)
        self.write_op(UxnOp.STA2)

    def _call_arg(self, fun: Arg) -> None:
        if isinstance(fun, (RefExternal, External)):
            self.write_op(UxnOp.JSI)
            self.write_label_rel(self.label_by_name(fun.name), 0)
        else:
            self._load_arg(fun)
            self.write_op(UxnOp.JSR2)

    # Arithmetic helpers ---------------------------------------------------

    def _write_abs_keep_sign(self) -> None:
        """Replace the short on top with its magnitude; stash its sign."""
        self.write_op(UxnOp.DUP2)
        self.write_lit(0x0F)
        self.write_op(UxnOp.SFT2)
        self.write_op(UxnOp.STH2k)
        self.write_lit2(0xFFFF)
        self.write_op(UxnOp.MUL2)
        self.write_op(UxnOp.EOR2)
        self.write_op(UxnOp.STH2kr)
        self.write_op(UxnOp.ADD2)

    def _write_signed_division(self) -> None:
        self.write_op(UxnOp.DIV2)
        self.write_op(UxnOp.EOR2r)
        self.write_op(UxnOp.STH2kr)
        self.write_lit2(0xFFFF)
        self.write_op(UxnOp.MUL2)
        self.write_op(UxnOp.EOR2)
        self.write_op(UxnOp.STH2r)
        self.write_op(UxnOp.ADD2)

    def _write_bool_to_short(self) -> None:
        self.write_lit(0)
        self.write_op(UxnOp.SWP)

    def _write_binop(self, op: BinaryOp) -> None:
        binop = op.binop
        simple = {
            Binop.PLUS: UxnOp.ADD2,
            Binop.MINUS: UxnOp.SUB2,
            Binop.MULT: UxnOp.MUL2,
            Binop.BIT_OR: UxnOp.ORA2,
            Binop.BIT_AND: UxnOp.AND2,
        }
        signed_compare = {
            Binop.LESS: (UxnOp.LTH2, False),
            Binop.GREATER: (UxnOp.GTH2, False),
            Binop.LESS_EQUAL: (UxnOp.GTH2, True),
            Binop.GREATER_EQUAL: (UxnOp.LTH2, True),
        }
        if binop in simple:
            self._load_arg(op.lhs)
            self._load_arg(op.rhs)
            self.write_op(simple[binop])
        elif binop in signed_compare:
            compare, negate = signed_compare[binop]
            self._load_arg(op.lhs)
            self.write_lit2(0x8000)
            self.write_op(UxnOp.EOR2)
            self._load_arg(op.rhs)
            self.write_lit2(0x8000)
            self.write_op(UxnOp.EOR2)
            self.write_op(compare)
            if negate:
                self.write_lit(1)
                self.write_op(UxnOp.EOR)
            self._write_bool_to_short()
        elif binop in (Binop.EQUAL, Binop.NOT_EQUAL):
            self._load_arg(op.lhs)
            self._load_arg(op.rhs)
            self.write_op(UxnOp.EQU2 if binop is Binop.EQUAL else UxnOp.NEQ2)
            self._write_bool_to_short()
        elif binop in (Binop.BIT_SHL, Binop.BIT_SHR):
            self._load_arg(op.lhs)
            self._load_arg(op.rhs)
            self.write_op(UxnOp.NIP)
            self.write_lit(0x0F)
            self.write_op(UxnOp.AND)
            if binop is Binop.BIT_SHL:
                self.write_lit(16)
                self.write_op(UxnOp.MUL)
            self.write_op(UxnOp.SFT2)
        elif binop is Binop.DIV:
            self._load_arg(op.lhs)
            self._write_abs_keep_sign()
            self._load_arg(op.rhs)
            self._write_abs_keep_sign()
            self._write_signed_division()
        elif binop is Binop.MOD:
            a, b = FIRST_ARG, FIRST_ARG + 2
            for operand, slot in ((op.lhs, a), (op.rhs, b)):
                self._load_arg(operand)
                self.write_lit(slot)
                self.write_op(UxnOp.STZ2k)
                self.write_op(UxnOp.POP)
                self._write_abs_keep_sign()
            self._write_signed_division()
            self.write_lit_ldz2(a)
            self.write_lit_ldz2(b)
            self.write_op(UxnOp.ROT2)
            self.write_op(UxnOp.MUL2)
            self.write_op(UxnOp.SUB2)
        else:
            raise CodegenError(f"unknown binary operator {binop!r}")
        self._store_auto(op.index)

    # Functions ------------------------------------------------------------

    def _write_return(self, arg: Optional[Arg]) -> None:
        if arg is None:
            self.write_lit2(0)
        else:
            self._load_arg(arg)
        self.write_lit_stz2(FIRST_ARG)
        # restore SP from BP
        self.write_lit_ldz2(BP)
        self.write_lit_stz2(SP)
        # pop BP from the stack
        self.write_lit_ldz2(SP)
        self.write_op(UxnOp.LDA2)
        self.write_lit_stz2(BP)
        self.write_lit_ldz2(SP)
        self.write_lit2(2)
        self.write_op(UxnOp.ADD2)
        self.write_lit_stz2(SP)
        self.write_op(UxnOp.JMP2r)

    def _generate_function(self, func: Func) -> None:
        self.link_label(self.label_by_name(func.name), len(self.output))

        if func.params_count > MAX_ARGS:
            raise MissingFeatureError(
                func.name_loc,
                "Too many parameters in function definition. "
                f"We support only {MAX_ARGS} but {func.params_count} were provided",
            )

        # push BP
        self.write_lit_ldz2(SP)
        self.write_lit2(2)
        self.write_op(UxnOp.SUB2)
        self.write_lit_stz2(SP)
        self.write_lit_ldz2(BP)
        self.write_lit_ldz2(SP)
        self.write_op(UxnOp.STA2)
        # BP = SP
        self.write_lit_ldz2(SP)
        self.write_lit_stz2(BP)
        # allocate auto variables
        self.write_lit_ldz2(SP)
        self.write_lit2(func.auto_vars_count * 2)
        self.write_op(UxnOp.SUB2)
        self.write_lit_stz2(SP)
        # copy parameters into auto variables
        for i in range(func.params_count):
            self.write_lit_ldz2(FIRST_ARG + i * 2)
            self._store_auto(i + 1)

        op_labels = [self.create_label() for _ in range(len(func.body) + 1)]

        for label, instruction in zip(op_labels, func.body):
            self.link_label(label, len(self.output))
            op = instruction.opcode
            if isinstance(op, UnaryNot):
                self._load_arg(op.arg)
                self.write_op(UxnOp.LIT2)
                self.write_short(0)
                self.write_op(UxnOp.EQU2)
                self._write_bool_to_short()
                self._store_auto(op.result)
            elif isinstance(op, Negate):
                self.write_lit2(0)
                self._load_arg(op.arg)
                self.write_op(UxnOp.SUB2)
                self._store_auto(op.result)
            elif isinstance(op, BinaryOp):
                self._write_binop(op)
            elif isinstance(op, AutoAssign):
                self._load_arg(op.arg)
                self._store_auto(op.index)
            elif isinstance(op, ExternalAssign):
                self._load_arg(op.arg)
                self.write_op(UxnOp.LIT2)
                self.write_label_abs(self.label_by_name(op.name), 0)
                self.write_op(UxnOp.STA2)
            elif isinstance(op, Store):
                self._load_arg(op.arg)
                self._auto_address(op.index)
                self.write_op(UxnOp.LDA2)
                self.write_op(UxnOp.STA2)
            elif isinstance(op, Funcall):
                if len(op.args) > MAX_ARGS:
                    raise MissingFeatureError(
                        instruction.loc,
                        "Too many function call arguments. "
                        f"We support only {MAX_ARGS} but {len(op.args)} were provided",
                    )
                for i, arg in enumerate(op.args):
                    self._load_arg(arg)
                    self.write_lit_stz2(FIRST_ARG + i * 2)
                self._call_arg(op.fun)
                self.write_lit_ldz2(FIRST_ARG)
                self._store_auto(op.result)
            elif isinstance(op, Asm):
                raise MissingFeatureError(instruction.loc, "Inline assembly")
            elif isinstance(op, Jmp):
                self.write_op(UxnOp.JMI)
                self.write_label_rel(op_labels[op.addr], 0)
            elif isinstance(op, JmpIfNot):
                self._load_arg(op.arg)
                self.write_lit2(0)
                self.write_op(UxnOp.EQU2)
                self.write_op(UxnOp.JCI)
                self.write_label_rel(op_labels[op.addr], 0)
            elif isinstance(op, Return):
                self._write_return(op.arg)
            else:
                raise CodegenError(f"unknown operation {op!r}")

        self.link_label(op_labels[-1], len(self.output))
        self._write_return(None)

    # Intrinsics -----------------------------------------------------------

    def _intrinsic_char(self) -> None:
        # ch = char(string, i): the i-th byte of string
        self.write_lit_ldz2(FIRST_ARG)
        self.write_lit_ldz2(FIRST_ARG + 2)
        self.write_op(UxnOp.ADD2)
        self.write_op(UxnOp.LDA)
        self._write_bool_to_short()
        self.write_lit_stz2(FIRST_ARG)
        self.write_op(UxnOp.JMP2r)

    def _intrinsic_lchar(self) -> None:
        # ch = lchar(string, i, ch): store ch as the i-th byte, return ch
        self.write_lit(FIRST_ARG + 5)
        self.write_op(UxnOp.LDZ)
        self.write_lit_ldz2(FIRST_ARG)
        self.write_lit_ldz2(FIRST_ARG + 2)
        self.write_op(UxnOp.ADD2)
        self.write_op(UxnOp.STAk)
        self.write_op(UxnOp.POP2)
        self._write_bool_to_short()
        self.write_lit_stz2(FIRST_ARG)
        self.write_op(UxnOp.JMP2r)

    def _intrinsic_uxn_dei(self) -> None:
        # value = uxn_dei(device): read a byte from a device
        self.write_lit(0)
        self.write_lit(FIRST_ARG)
        self.write_op(UxnOp.STZ)
        self.write_lit(FIRST_ARG + 1)
        self.write_op(UxnOp.LDZk)
        self.write_op(UxnOp.DEI)
        self.write_op(UxnOp.SWP)
        self.write_op(UxnOp.STZ)
        self.write_op(UxnOp.JMP2r)

    def _intrinsic_uxn_dei2(self) -> None:
        # value = uxn_dei2(device): read a short from a device
        self.write_lit(FIRST_ARG + 1)
        self.write_op(UxnOp.LDZ)
        self.write_op(UxnOp.DEI2)
        self.write_lit_stz2(FIRST_ARG)
        self.write_op(UxnOp.JMP2r)

    def _intrinsic_uxn_deo(self) -> None:
        # uxn_deo(device, value): write a byte to a device
        self.write_lit(FIRST_ARG + 3)
        self.write_op(UxnOp.LDZ)
        self.write_lit(FIRST_ARG + 1)
        self.write_op(UxnOp.LDZ)
        self.write_op(UxnOp.DEO)
        self.write_lit2(0)
        self.write_lit_stz2(FIRST_ARG)
        self.write_op(UxnOp.JMP2r)

    def _intrinsic_uxn_deo2(self) -> None:
        # uxn_deo2(device, value): write a short to a device
        self.write_lit_ldz2(FIRST_ARG + 2)
        self.write_lit(FIRST_ARG + 1)
        self.write_op(UxnOp.LDZ)
        self.write_op(UxnOp.DEO2)
        self.write_lit2(0)
        self.write_lit_stz2(FIRST_ARG)
        self.write_op(UxnOp.JMP2r)

    def _generate_extrns(self, program: Program) -> None:
        intrinsics: dict[str, Callable[[], None]] = {
            "char": self._intrinsic_char,
            "lchar": self._intrinsic_lchar,
            "uxn_dei": self._intrinsic_uxn_dei,
            "uxn_dei2": self._intrinsic_uxn_dei2,
            "uxn_deo": self._intrinsic_uxn_deo,
            "uxn_deo2": self._intrinsic_uxn_deo2,
        }
        for name in program.extrns:
            if program.has_func(name) or program.has_global(name):
                continue
            emit = intrinsics.get(name)
            if emit is None:
                raise LinkError(f"Unknown extrn: `{name}`, can not link")
            self.link_label(self.label_by_name(name), len(self.output))
            emit()

    # Data -------------------------------------------------------------------

    def _generate_data_section(self, data: bytes) -> None:
        self.link_label(self.data_section_label, len(self.output))
        self.output.extend(data)

    def _generate_globals(self, globals_: list[Global]) -> None:
        for glob in globals_:
            self.link_label(self.label_by_name(glob.name), len(self.output))
            if glob.is_vec:
                label = self.create_label()
                self.write_label_abs(label, 0)
                self.link_label(label, len(self.output))
            for value in glob.values:
                if isinstance(value, ImmLiteral):
                    self.write_short(value.value)
                elif isinstance(value, ImmName):
                    self.write_label_abs(self.label_by_name(value.name), 0)
                elif isinstance(value, ImmDataOffset):
                    self.write_label_abs(self.data_section_label, value.offset)
                else:
                    raise CodegenError(f"unknown initialiser {value!r}")
            for _ in range(len(glob.values), glob.minimum_size):
                self.write_short(0)


def generate_program(program: Program) -> bytes:
    """Compile ``program`` into a Uxn ROM image."""
    asm = UxnAssembler()
    asm.write_lit2(0xFFFF)
    asm.write_lit_stz2(SP)
    entry = "_start" if program.has_func("_start") else "main"
    asm.write_op(UxnOp.JSI)
    asm.write_label_rel(asm.label_by_name(entry), 0)
    # BRK out of the vector; also the return address for later vectors
    vector_return = asm.create_label()
    asm.link_label(vector_return, len(asm.output))
    asm.write_op(UxnOp.LIT2r)
    asm.write_label_abs(vector_return, 0)
    asm.write_op(UxnOp.BRK)

    for func in program.funcs:
        asm._generate_function(func)
    asm._generate_extrns(program)
    asm._generate_data_section(program.data)
    asm._generate_globals(program.globals)

    asm.apply_patches()
    return bytes(asm.output)