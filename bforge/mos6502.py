"""Code generator producing raw 6502 machine code.

Words are 16 bits wide so that pointers can address the whole memory: the
low byte lives in A and the high byte in Y. The first argument of a call is
passed in Y:A, the remaining ones on the hardware stack at 0x0100-0x01FF.
Machine code is loaded at 0xE000 unless ``LOAD_OFFSET=<hex>`` is given as a
link flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

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
    Jmp,
    JmpIfNot,
    LinkError,
    Literal,
    Loc,
    MissingFeatureError,
    Negate,
    Program,
    RefAutoVar,
    RefExternal,
    Return,
    Store,
    UnaryNot,
)

__all__ = [
    "AddressAbs",
    "AddressRel",
    "DataOffsetReloc",
    "LabelReloc",
    "Relocation",
    "Config",
    "Mos6502Assembler",
    "parse_config_from_link_flags",
    "generate_program",
    "DEFAULT_LOAD_OFFSET",
]

ADC_IMM = 0x69
ADC_X = 0x7D
ADC_ZP = 0x65
BNE = 0xD0
CLC = 0x18
CMP_IMM = 0xC9
CMP_ZP = 0xC5
CPY_IMM = 0xC0
CPY_ZP = 0xC4
INX = 0xE8
JMP_ABS = 0x4C
JMP_IND = 0x6C
JSR = 0x20
LDA_IMM = 0xA9
LDA_IND_X = 0xA1
LDA_IND_Y = 0xB1
LDA_X = 0xBD
LDX_IMM = 0xA2
LDY_IMM = 0xA0
LDY_X = 0xBC
PHA = 0x48
PLA = 0x68
RTS = 0x60
STA_X = 0x9D
STA_ZP = 0x85
STY_ZP = 0x84
TAX = 0xAA
TAY = 0xA8
TSX = 0xBA
TXA = 0x8A
TXS = 0x9A
TYA = 0x98

# zero page scratch locations
ZP_DEREF_0 = 0
ZP_DEREF_1 = 1
ZP_OP_TMP_0 = 3
ZP_OP_TMP_1 = 4
ZP_DEREF_FUN_0 = 5
ZP_DEREF_FUN_1 = 6

STACK_PAGE = 0x0100
DEFAULT_LOAD_OFFSET = 0xE000
_LOAD_OFFSET_PREFIX = "LOAD_OFFSET="

_UNSUPPORTED_BINOPS = {
    Binop.BIT_OR: "BitOr",
    Binop.BIT_AND: "BitAnd",
    Binop.BIT_SHL: "BitShl",
    Binop.BIT_SHR: "BitShr",
    Binop.MINUS: "Minus",
    Binop.MOD: "Mod",
    Binop.DIV: "Div",
    Binop.MULT: "Mult",
    Binop.LESS: "Less",
    Binop.GREATER: "Greater",
    Binop.NOT_EQUAL: "NotEqual",
    Binop.GREATER_EQUAL: "GreaterEqual",
    Binop.LESS_EQUAL: "LessEqual",
}


@dataclass(frozen=True)
class AddressAbs:
    """Absolute address of the entry ``idx`` in the address table."""

    idx: int


@dataclass(frozen=True)
class AddressRel:
    """Branch offset to entry ``idx`` of the address table, relative to the patch plus ``add``."""

    idx: int
    add: int


@dataclass(frozen=True)
class DataOffsetReloc:
    """One byte of the address of byte ``off`` in the data section."""

    off: int
    low: bool


@dataclass(frozen=True)
class LabelReloc:
    """Absolute address of the named function or intrinsic."""

    name: str


RelocationKind = Union[AddressAbs, AddressRel, DataOffsetReloc, LabelReloc]


def _is16(kind: RelocationKind) -> bool:
    return isinstance(kind, (AddressAbs, LabelReloc))


@dataclass(frozen=True)
class Relocation:
    kind: RelocationKind
    addr: int


@dataclass(frozen=True)
class Config:
    load_offset: int = DEFAULT_LOAD_OFFSET


@dataclass
class Mos6502Assembler:
    """Accumulates machine code and the relocations still to be applied."""

    output: bytearray = field(default_factory=bytearray)
    relocs: list[Relocation] = field(default_factory=list)
    labels: dict[str, int] = field(default_factory=dict)
    addresses: list[int] = field(default_factory=list)
    # current frame size in bytes; the 6502 has no base register
    frame_sz: int = 0

    # Emission -----------------------------------------------------------

    def write_byte(self, byte: int) -> None:
        self.output.append(byte & 0xFF)

    def write_word(self, word: int) -> None:
        """Append a 16-bit value, little-endian."""
        word &= 0xFFFF
        self.output.append(word & 0xFF)
        self.output.append(word >> 8)

    def _write_byte_at(self, byte: int, addr: int) -> None:
        self.output[addr] = byte & 0xFF

    def _write_word_at(self, word: int, addr: int) -> None:
        word &= 0xFFFF
        self.output[addr] = word & 0xFF
        self.output[addr + 1] = word >> 8

    def add_reloc(self, kind: RelocationKind) -> None:
        """Record a relocation here and reserve the bytes it will fill."""
        self.relocs.append(Relocation(kind, len(self.output) & 0xFFFF))
        if _is16(kind):
            self.write_word(0)
        else:
            self.write_byte(0)

    def _add_label(self, name: str) -> None:
        self.labels.setdefault(name, len(self.output) & 0xFFFF)

    # Stack and auto variables -------------------------------------------

    def _auto_slot(self, index: int) -> tuple[int, int]:
        high = STACK_PAGE + self.frame_sz - (index - 1) * 2
        return high - 1, high

    def _load_auto_var(self, index: int) -> None:
        low, high = self._auto_slot(index)
        self.write_byte(TSX)
        self.write_byte(LDA_X)
        self.write_word(low)
        self.write_byte(LDY_X)
        self.write_word(high)

    def _store_auto(self, index: int) -> None:
        low, high = self._auto_slot(index)
        self.write_byte(TSX)
        self.write_byte(STA_X)
        self.write_word(low)
        self.write_byte(TYA)
        self.write_byte(STA_X)
        self.write_word(high)

    def _add_sp(self, count: int) -> None:
        self.frame_sz -= count
        if count < 8:
            for _ in range(count):
                self.write_byte(PLA)
        else:
            for byte in (TSX, TXA, CLC, ADC_IMM, count, TAX, TXS):
                self.write_byte(byte)

    def _sub_sp(self, count: int) -> None:
        # Y:A hold the first argument here, so only pushes are allowed.
        self.frame_sz += count
        for _ in range(count):
            self.write_byte(PHA)

    def _push16(self) -> None:
        self.frame_sz += 2
        # high byte first, then low
        for byte in (TAX, TYA, PHA, TXA, PHA):
            self.write_byte(byte)

    def _pop16_discard(self) -> None:
        self.frame_sz -= 2
        self.write_byte(PLA)
        self.write_byte(PLA)

    # Operands -----------------------------------------------------------

    def _load_arg(self, arg: Arg, loc: Loc) -> None:
        if isinstance(arg, Deref):
            self._load_auto_var(arg.index)
            # registers are 8 bits, so dereference through the zero page
            for byte in (
                STA_ZP, ZP_DEREF_0, STY_ZP, ZP_DEREF_1,
                LDY_IMM, 1, LDA_IND_Y, ZP_DEREF_0, TAY,
                LDX_IMM, 0, LDA_IND_X, ZP_DEREF_0,
            ):
                self.write_byte(byte)
        elif isinstance(arg, RefAutoVar):
            raise MissingFeatureError(loc, "RefAutoVar")
        elif isinstance(arg, RefExternal):
            raise MissingFeatureError(loc, "RefExternal")
        elif isinstance(arg, External):
            raise MissingFeatureError(loc, "External")
        elif isinstance(arg, AutoVar):
            self._load_auto_var(arg.index)
        elif isinstance(arg, Literal):
            if not 0 <= arg.value < 65536:
                raise CodegenError(f"literal {arg.value} does not fit in 16 bits")
            self.write_byte(LDA_IMM)
            self.write_byte(arg.value)
            self.write_byte(LDY_IMM)
            self.write_byte(arg.value >> 8)
        elif isinstance(arg, DataOffset):
            if not 0 <= arg.offset < 65536:
                raise CodegenError(f"data offset {arg.offset} does not fit in 16 bits")
            self.write_byte(LDA_IMM)
            self.add_reloc(DataOffsetReloc(arg.offset, True))
            self.write_byte(LDY_IMM)
            self.add_reloc(DataOffsetReloc((arg.offset + 1) & 0xFFFF, False))
        elif isinstance(arg, Bogus):
            raise CodegenError("bogus operand reached the 6502 code generator")
        else:
            raise CodegenError(f"unknown operand {arg!r}")

    def _load_binop_operands(self, op: BinaryOp, loc: Loc) -> None:
        self._load_arg(op.rhs, loc)
        for byte in (STA_ZP, ZP_OP_TMP_0, STY_ZP, ZP_OP_TMP_1):
            self.write_byte(byte)
        self._load_arg(op.lhs, loc)

    # Functions ------------------------------------------------------------

    def _generate_function(self, func: Func, code_start: int) -> None:
        self.frame_sz = 0
        self._add_label(func.name)

        # one address slot per op plus one for the end of the function
        op_addresses = []
        for _ in range(len(func.body) + 1):
            op_addresses.append(len(self.addresses))
            self.addresses.append(0)

        if func.auto_vars_count * 2 >= 256:
            raise CodegenError(
                f"{func.name_loc}: too many auto variables in `{func.name}`"
            )
        stack_size = func.auto_vars_count * 2
        self._sub_sp(stack_size)

        for i in range(func.params_count):
            self.write_byte(TSX)
            dest_low = STACK_PAGE + stack_size - 2 * i - 1
            dest_high = STACK_PAGE + stack_size - 2 * i
            if i == 0:
                self.write_byte(STA_X)
                self.write_word(dest_low)
                self.write_byte(TYA)
                self.write_byte(STA_X)
                self.write_word(dest_high)
                continue
            self.write_byte(LDA_X)
            self.write_word(STACK_PAGE + stack_size + 2 + 2 * i + 1)
            self.write_byte(STA_X)
            self.write_word(dest_low)
            self.write_byte(LDA_X)
            self.write_word(STACK_PAGE + stack_size + 2 + 2 * i + 2)
            self.write_byte(STA_X)
            self.write_word(dest_high)

        name_loc = func.name_loc
        for slot, instruction in zip(op_addresses, func.body):
            self.addresses[slot] = len(self.output) & 0xFFFF
            op = instruction.opcode
            loc = instruction.loc
            if isinstance(op, Return):
                raise MissingFeatureError(name_loc, "implement Return")
            elif isinstance(op, Store):
                raise MissingFeatureError(name_loc, "implement Store")
            elif isinstance(op, ExternalAssign):
                raise MissingFeatureError(name_loc, "implement ExternalAssign")
            elif isinstance(op, AutoAssign):
                self._load_arg(op.arg, loc)
                self._store_auto(op.index)
            elif isinstance(op, Negate):
                raise MissingFeatureError(name_loc, "implement Negate")
            elif isinstance(op, UnaryNot):
                raise MissingFeatureError(name_loc, "implement UnaryNot")
            elif isinstance(op, BinaryOp):
                self._generate_binop(op, loc, name_loc)
            elif isinstance(op, Funcall):
                self._generate_funcall(op, loc, code_start)
            elif isinstance(op, Asm):
                raise CodegenError("inline assembly reached the 6502 code generator")
            elif isinstance(op, JmpIfNot):
                self._load_arg(op.arg, loc)
                # if either byte is non-zero, skip over the jump
                for byte in (CMP_IMM, 0, BNE, 7, CPY_IMM, 0, BNE, 3, JMP_ABS):
                    self.write_byte(byte)
                self.add_reloc(AddressAbs(op_addresses[op.addr]))
            elif isinstance(op, Jmp):
                self.write_byte(JMP_ABS)
                self.add_reloc(AddressAbs(op_addresses[op.addr]))
            else:
                raise CodegenError(f"unknown operation {op!r}")

        self.addresses[op_addresses[-1]] = len(self.output) & 0xFFFF
        self._add_sp(stack_size)
        self.write_byte(RTS)

    def _generate_binop(self, op: BinaryOp, loc: Loc, name_loc: Loc) -> None:
        if op.binop is Binop.PLUS:
            self._load_binop_operands(op, loc)
            for byte in (
                CLC, ADC_ZP, ZP_OP_TMP_0, TAX,
                TYA, ADC_ZP, ZP_OP_TMP_1, TAY, TXA,
            ):
                self.write_byte(byte)
        elif op.binop is Binop.EQUAL:
            self._load_binop_operands(op, loc)
            for byte in (
                LDX_IMM, 0,
                CMP_ZP, ZP_OP_TMP_0, BNE, 5,
                CPY_ZP, ZP_OP_TMP_1, BNE, 1,
                INX, TXA, LDY_IMM, 0,
            ):
                self.write_byte(byte)
        elif op.binop in _UNSUPPORTED_BINOPS:
            raise MissingFeatureError(name_loc, f"implement {_UNSUPPORTED_BINOPS[op.binop]}")
        else:
            raise CodegenError(f"unknown binary operator {op.binop!r}")
        self._store_auto(op.index)

    def _generate_funcall(self, op: Funcall, loc: Loc, code_start: int) -> None:
        direct = isinstance(op.fun, (RefExternal, External))
        if not direct:
            self._load_arg(op.fun, loc)
            for byte in (STA_ZP, ZP_DEREF_FUN_0, STY_ZP, ZP_DEREF_FUN_1):
                self.write_byte(byte)

        for i, arg in reversed(list(enumerate(op.args))):
            self._load_arg(arg, loc)
            # the first argument stays in Y:A
            if i != 0:
                self._push16()

        if direct:
            self.write_byte(JSR)
            self.add_reloc(LabelReloc(op.fun.name))
        else:
            # no indirect JSR: JSR to a JMP (indirect) placed after a skip
            self.write_byte(JSR)
            self.write_word(code_start + len(self.output) + 5)
            self.write_byte(JMP_ABS)
            self.write_word(code_start + len(self.output) + 5)
            self.write_byte(JMP_IND)
            self.write_word(ZP_DEREF_FUN_0)

        if len(op.args) > 1:
            self.write_byte(TAX)
            for _ in op.args[1:]:
                self._pop16_discard()
            self.write_byte(TXA)
        self._store_auto(op.result)

    # Intrinsics and layout -------------------------------------------------

    def _generate_extrns(self, program: Program) -> None:
        for name in program.extrns:
            if program.has_func(name) or program.has_global(name):
                continue
            if name != "char":
                raise LinkError(f"Unknown extrn: `{name}`, can not link")
            # ch = char(string, i): the i-th byte of string
            self._add_label(name)
            self.write_byte(TSX)
            self.write_byte(CLC)
            self.write_byte(ADC_X)
            self.write_word(STACK_PAGE + 2 + 1)
            self.write_byte(STA_ZP)
            self.write_byte(ZP_DEREF_0)
            self.write_byte(TYA)
            self.write_byte(ADC_X)
            self.write_word(STACK_PAGE + 2 + 2)
            for byte in (
                STA_ZP, ZP_DEREF_1,
                LDX_IMM, 0,
                LDA_IND_X, ZP_DEREF_0,
                LDY_IMM, 0,
                RTS,
            ):
                self.write_byte(byte)

    def _generate_entry(self) -> None:
        self.write_byte(JSR)
        self.add_reloc(LabelReloc("main"))
        self.write_byte(JMP_IND)
        self.write_word(0xFFFC)

    def apply_relocations(self, code_start: int, data_start: int) -> None:
        """Fill every recorded relocation in with its final value."""
        for reloc in self.relocs:
            kind = reloc.kind
            taddr = reloc.addr
            if isinstance(kind, DataOffsetReloc):
                target = (data_start + kind.off) & 0xFFFF
                self._write_byte_at(target if kind.low else target >> 8, taddr)
            elif isinstance(kind, LabelReloc):
                addr = self.labels.get(kind.name)
                if addr is None:
                    raise LinkError(f"linking failed. could not find label `{kind.name}'")
                self._write_word_at(code_start + addr, taddr)
            elif isinstance(kind, AddressRel):
                jaddr = self.addresses[kind.idx]
                rel = (jaddr - (taddr + kind.add)) & 0xFFFF
                if rel >= 0x8000:
                    rel -= 0x10000
                if not -128 <= rel < 128:
                    raise CodegenError(f"branch offset {rel} out of range")
                self._write_byte_at(rel, taddr)
            elif isinstance(kind, AddressAbs):
                self._write_word_at(self.addresses[kind.idx] + code_start, taddr)
            else:
                raise CodegenError(f"unknown relocation {kind!r}")


def _strtoull_hex(text: str) -> int:
    """Parse a leading hexadecimal number the way strtoull does with base 16."""
    rest = text.lstrip(" \t\n\r\f\v")
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest[:2].lower() == "0x" and rest[2:3] and rest[2] in "0123456789abcdefABCDEF":
        rest = rest[2:]
    digits = []
    for ch in rest:
        if ch not in "0123456789abcdefABCDEF":
            break
        digits.append(ch)
    if not digits:
        return 0
    value = int("".join(digits), 16)
    limit = (1 << 64) - 1
    if value > limit:
        return limit
    return (-value) & limit if negative else value


def parse_config_from_link_flags(link_flags: Iterable[str]) -> Config:
    """Build a Config from ``LOAD_OFFSET=<hex>`` style link flags."""
    load_offset = DEFAULT_LOAD_OFFSET
    for flag in link_flags:
        if flag.startswith(_LOAD_OFFSET_PREFIX):
            load_offset = _strtoull_hex(flag[len(_LOAD_OFFSET_PREFIX):]) & 0xFFFF
        else:
            raise ValueError(f"Unknown linker flag: {flag}")
    return Config(load_offset=load_offset)


def generate_program(program: Program, config: Optional[Config] = None) -> bytes:
    """Compile ``program`` into a 6502 machine code image."""
    if config is None:
        config = Config()
    asm = Mos6502Assembler()
    asm._generate_entry()
    for func in program.funcs:
        asm._generate_function(func, config.load_offset)
    asm._generate_extrns(program)
    data_start = (config.load_offset + len(asm.output)) & 0xFFFF
    asm.output.extend(program.data)
    asm.apply_relocations(config.load_offset, data_start)
    return bytes(asm.output)