"""Opcodes of the Uxn virtual machine."""

from __future__ import annotations

import enum

__all__ = ["UxnOp"]

# The low five bits select the operation; bit 0x20 is the short mode,
# bit 0x40 the return-stack mode and bit 0x80 the keep mode.
_SHORT = 0x20
_RETURN = 0x40
_KEEP = 0x80

_BASE_NAMES = (
    "BRK", "INC", "POP", "NIP", "SWP", "ROT", "DUP", "OVR",
    "EQU", "NEQ", "GTH", "LTH", "JMP", "JCN", "JSR", "STH",
    "LDZ", "STZ", "LDR", "STR", "LDA", "STA", "DEI", "DEO",
    "ADD", "SUB", "MUL", "DIV", "AND", "ORA", "EOR", "SFT",
)

# Opcodes whose low five bits are zero do not follow the mode pattern.
_IMMEDIATE_NAMES = {
    0x00: "BRK",
    0x20: "JCI",
    0x40: "JMI",
    0x60: "JSI",
    0x80: "LIT",
    0xA0: "LIT2",
    0xC0: "LITr",
    0xE0: "LIT2r",
}


def _mnemonic(code: int) -> str:
    special = _IMMEDIATE_NAMES.get(code)
    if special is not None:
        return special
    name = _BASE_NAMES[code & 0x1F]
    if code & _SHORT:
        name += "2"
    if code & _KEEP:
        name += "k"
    if code & _RETURN:
        name += "r"
    return name


UxnOp = enum.IntEnum(  # type: ignore[misc]
    "UxnOp",
    [(_mnemonic(code), code) for code in range(256)],
    module=__name__,
)
UxnOp.__doc__ = "Every Uxn instruction byte, named by its mnemonic."