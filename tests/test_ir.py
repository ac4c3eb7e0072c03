import dataclasses

import pytest

from bforge.ir import (
    Asm,
    AutoAssign,
    AutoVar,
    BinaryOp,
    Binop,
    CodegenError,
    DataOffset,
    Deref,
    External,
    Func,
    Funcall,
    Global,
    ImmDataOffset,
    ImmLiteral,
    ImmName,
    Instruction,
    Jmp,
    JmpIfNot,
    LinkError,
    Literal,
    Loc,
    MissingFeatureError,
    Program,
    RefAutoVar,
    RefExternal,
    Return,
)


@pytest.fixture
def loc():
    return Loc("hello.b", 3, 7)


def test_loc_str_contains_all_parts(loc):
    assert str(loc) == "hello.b:3:7"


@pytest.mark.parametrize("member", list(Binop))
def test_binop_round_trips_through_symbol(member):
    assert Binop(member.value) is member


def test_binop_symbols_are_unique():
    symbols = [b.value for b in Binop]
    assert [Binop(s) for s in symbols] == list(Binop)
    assert len(symbols) == len(set(symbols)) == 15


def test_args_compare_by_value():
    assert AutoVar(2) == AutoVar(2)
    assert AutoVar(2) != RefAutoVar(2)
    assert {Literal(5), Literal(5), DataOffset(5)} == {Literal(5), DataOffset(5)}


def test_args_are_immutable():
    arg = Deref(1)
    with pytest.raises(dataclasses.FrozenInstanceError):
        arg.index = 2
    assert arg.index == 1
    assert arg == Deref(1)


def test_instruction_keeps_opcode_and_loc(loc):
    op = BinaryOp(Binop.PLUS, 1, AutoVar(1), Literal(3))
    inst = Instruction(op, loc)
    assert inst.opcode.binop is Binop.PLUS
    assert inst.opcode.rhs == Literal(3)
    assert inst.loc == loc


def test_defaults_of_ops():
    assert Return().arg is None
    assert Funcall(1, External("putchar")).args == ()
    assert Asm().args == ()


def test_func_body(loc):
    body = (
        Instruction(AutoAssign(1, Literal(0)), loc),
        Instruction(JmpIfNot(3, AutoVar(1)), loc),
        Instruction(Jmp(0), loc),
    )
    func = Func("main", loc, 0, 1, body)
    assert len(func.body) == 3
    assert func.body[1].opcode.addr == 3


def test_program_has_func(loc):
    program = Program(funcs=[Func("main", loc, 0, 0)])
    assert program.has_func("main")
    assert not program.has_func("printf")


def test_program_has_global():
    program = Program(
        globals=[Global("x", (ImmLiteral(1), ImmName("y"), ImmDataOffset(2)), True, 4)]
    )
    assert program.has_global("x")
    assert not program.has_global("y")
    assert program.globals[0].values[1] == ImmName("y")


def test_empty_program():
    program = Program()
    assert program.data == b""
    assert not program.has_func("main")
    assert not program.has_global("main")


def test_missing_feature_error(loc):
    err = MissingFeatureError(loc, "implement Mod")
    assert isinstance(err, CodegenError)
    assert err.loc == loc
    assert err.message == "implement Mod"
    assert str(loc) in str(err)
    assert "implement Mod" in str(err)


def test_link_error_is_codegen_error():
    err = LinkError("could not find label `main'")
    assert isinstance(err, CodegenError)
    assert "could not find label `main'" in str(err)


def test_ref_external_holds_name():
    assert RefExternal("putchar").name == "putchar"