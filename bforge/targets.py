"""Code generation targets and their properties."""

from __future__ import annotations

import enum
from typing import Optional


class Target(enum.Enum):
    """A code generation target, valued by its command-line name."""

    FASM_X86_64_WINDOWS = "fasm-x86_64-windows"
    FASM_X86_64_LINUX = "fasm-x86_64-linux"
    GAS_AARCH64_LINUX = "gas-aarch64-linux"
    UXN = "uxn"
    MOS6502 = "6502"
    IR = "ir"


class Os(enum.Enum):
    LINUX = "linux"
    WINDOWS = "windows"


_WORD_SIZES = {
    Target.FASM_X86_64_WINDOWS: 8,
    Target.FASM_X86_64_LINUX: 8,
    Target.GAS_AARCH64_LINUX: 8,
    Target.UXN: 2,
    Target.MOS6502: 2,
    Target.IR: 1,
}


def name_of_target(target: Target) -> str:
    """Return the command-line name of ``target``."""
    return target.value


def target_by_name(name: str) -> Optional[Target]:
    """Return the target called ``name``, or None if there is none."""
    for target in Target:
        if target.value == name:
            return target
    return None


def target_word_size(target: Target) -> int:
    """Return the machine word size of ``target`` in bytes."""
    return _WORD_SIZES[target]