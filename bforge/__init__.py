"""Uxn and MOS 6502 code generators for a B-language intermediate representation."""

__version__ = "0.1.0"
__all__ = ["ir", "targets", "uxn_ops", "uxn", "mos6502"]