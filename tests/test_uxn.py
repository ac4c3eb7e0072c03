import pytest

from bforge.ir import (
    Asm,
    AutoAssign,
    Bogus,
    CodegenError,
    Func,
    Funcall,
    Global,
    ImmLiteral,
    Instruction,
    LinkError,
    Literal,
    Loc,
    MissingFeatureError,
    Program,
    RefExternal,
)
from bforge.uxn import UxnAssembler, generate_program
from bforge.uxn_ops import UxnOp

LOC = Loc("t.b", 1, 1)
ENTRY_LEN = 13


def _func(name, body=(), params=0, autos=0):
    return Func(name, LOC, params, autos, tuple(Instruction(op, LOC) for op in body))


def _rel_target(rom, pos):
    rel = int.from_bytes(rom[pos:pos + 2], "big", signed=True)
    return pos + 2 + rel


def test_write_short_is_big_endian():
    asm = UxnAssembler()
    asm.write_short(0x1234)
    assert bytes(asm.output) == b"\x12\x34"


def test_write_lit2_and_zero_page_helpers():
    asm = UxnAssembler()
    asm.write_lit2(0xABCD)
    asm.write_lit_ldz2(2)
    asm.write_lit_stz2(0)
    assert bytes(asm.output) == bytes(
        [UxnOp.LIT2, 0xAB, 0xCD, UxnOp.LIT, 2, UxnOp.LDZ2, UxnOp.LIT, 0, UxnOp.STZ2]
    )


def test_labels_by_name_are_shared():
    asm = UxnAssembler()
    foo = asm.label_by_name("foo")
    assert asm.label_by_name("foo") == foo
    assert asm.label_by_name("bar") != foo
    fresh = asm.create_label()
    assert fresh not in (foo, asm.label_by_name("bar"), asm.data_section_label)


def test_absolute_patch_adds_rom_start():
    asm = UxnAssembler()
    label = asm.create_label()
    asm.write_label_abs(label, 0)
    asm.link_label(label, 0x10)
    asm.apply_patches()
    assert int.from_bytes(asm.output, "big") == 0x110


@pytest.mark.parametrize("prefix,target", [(0, 40), (30, 5)])
def test_relative_patch_round_trips(prefix, target):
    asm = UxnAssembler()
    asm.output.extend(bytes(prefix))
    label = asm.create_label()
    asm.write_label_rel(label, 0)
    asm.link_label(label, target)
    asm.apply_patches()
    assert _rel_target(bytes(asm.output), prefix) == target


def test_unlinked_named_label_raises():
    asm = UxnAssembler()
    asm.write_label_abs(asm.label_by_name("nowhere"), 0)
    with pytest.raises(LinkError, match="nowhere"):
        asm.apply_patches()


def test_unlinked_anonymous_label_raises():
    asm = UxnAssembler()
    asm.write_label_rel(asm.create_label(), 0)
    with pytest.raises(LinkError, match="never linked"):
        asm.apply_patches()


def test_entry_code_layout():
    rom = generate_program(Program(funcs=[_func("main")]))
    assert rom[:7] == bytes([UxnOp.LIT2, 0xFF, 0xFF, UxnOp.LIT, 0, UxnOp.STZ2, UxnOp.JSI])
    assert rom[9] == UxnOp.LIT2r
    assert int.from_bytes(rom[10:12], "big") == 0x100 + 9
    assert rom[12] == UxnOp.BRK
    assert _rel_target(rom, 7) == ENTRY_LEN
    assert rom[-1] == UxnOp.JMP2r


def test_start_takes_priority_over_main():
    main_only = generate_program(Program(funcs=[_func("main")]))
    main_len = len(main_only) - ENTRY_LEN
    rom = generate_program(Program(funcs=[_func("main"), _func("_start")]))
    assert _rel_target(rom, 7) == ENTRY_LEN + main_len


def test_missing_main_fails_to_link():
    with pytest.raises(LinkError, match="main"):
        generate_program(Program(funcs=[_func("other")]))


def test_data_section_follows_code():
    rom = generate_program(Program(funcs=[_func("main")], data=b"hi\0"))
    assert rom.endswith(b"hi\0")


def test_global_is_padded_to_minimum_size():
    glob = Global("x", (ImmLiteral(7),), minimum_size=3)
    rom = generate_program(Program(funcs=[_func("main")], globals=[glob]))
    assert rom.endswith(b"\x00\x07\x00\x00\x00\x00")


def test_char_intrinsic_is_emitted():
    body = [Funcall(1, RefExternal("char"), (Literal(0), Literal(0)))]
    program = Program(funcs=[_func("main", body, autos=1)], extrns=["char"])
    rom = generate_program(program)
    expected = bytes([
        UxnOp.LIT, 4, UxnOp.LDZ2,
        UxnOp.LIT, 6, UxnOp.LDZ2,
        UxnOp.ADD2, UxnOp.LDA,
        UxnOp.LIT, 0, UxnOp.SWP,
        UxnOp.LIT, 4, UxnOp.STZ2,
        UxnOp.JMP2r,
    ])
    assert rom.endswith(expected)
    jsi = rom.index(bytes([UxnOp.JSI]), ENTRY_LEN)
    assert _rel_target(rom, jsi + 1) == len(rom) - len(expected)


def test_extrn_defined_in_program_is_not_an_intrinsic():
    program = Program(funcs=[_func("main"), _func("helper")], extrns=["helper"])
    with_extrn = generate_program(program)
    without = generate_program(Program(funcs=[_func("main"), _func("helper")]))
    assert with_extrn == without


def test_unknown_extrn_raises():
    program = Program(funcs=[_func("main")], extrns=["printf"])
    with pytest.raises(LinkError, match="printf"):
        generate_program(program)


def test_too_many_parameters():
    with pytest.raises(MissingFeatureError, match="Too many parameters"):
        generate_program(Program(funcs=[_func("main", params=127, autos=127)]))


def test_too_many_call_arguments():
    body = [Funcall(1, RefExternal("main"), tuple(Literal(0) for _ in range(127)))]
    with pytest.raises(MissingFeatureError, match="Too many function call arguments"):
        generate_program(Program(funcs=[_func("main", body, autos=1)]))


def test_inline_assembly_is_unsupported():
    with pytest.raises(MissingFeatureError, match="Inline assembly"):
        generate_program(Program(funcs=[_func("main", [Asm(("nop",))])]))


def test_bogus_operand_is_rejected():
    with pytest.raises(CodegenError):
        generate_program(Program(funcs=[_func("main", [AutoAssign(1, Bogus())], autos=1)]))