# bforge

`bforge` holds the back ends of a small compiler for the B programming
language. It takes a program that has already been lowered to a simple
intermediate representation and produces a binary image for one of two
targets:

- **Uxn**: a ROM image for the Uxn virtual machine, loaded at `0x0100`.
- **6502**: raw machine code for the MOS 6502, loaded at `0xE000` by default.

The package has no runtime dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## The intermediate representation

`bforge.ir` describes a program:

- `Program` collects functions (`Func`), globals (`Global`), the names
  declared `extrn`, and the bytes of the data section. `Program.has_func`
  and `Program.has_global` tell whether a name is defined.
- A `Func` has a name, a source location (`Loc`), the number of parameters
  and automatic variables, and a body of `Instruction`s. Each instruction
  pairs an operation with its `Loc`.
- Operations are `AutoAssign`, `ExternalAssign`, `Store`, `Negate`,
  `UnaryNot`, `BinaryOp` (with a `Binop`), `Funcall`, `Asm`, `Jmp`,
  `JmpIfNot` and `Return`. Jump targets are positions in the function body.
- Operands are `AutoVar`, `Deref`, `RefAutoVar`, `External`, `RefExternal`,
  `Literal`, `DataOffset` and `Bogus`. Auto variables are numbered from 1.
- Global initialisers are `ImmLiteral`, `ImmName` and `ImmDataOffset`.

Errors are raised as `CodegenError` or one of its subclasses.
`MissingFeatureError` means the target cannot generate code for that
construct; its message starts with the source location. `LinkError` means a
name could not be resolved.

## Targets

`bforge.targets` lists the known targets (`Target`) and maps them to their
command-line names, such as `"uxn"` and `"6502"`:

```python
from bforge.targets import Target, target_by_name, name_of_target, target_word_size

target = target_by_name("uxn")
assert target is Target.UXN
assert name_of_target(target) == "uxn"
assert target_word_size(target) == 2
assert target_by_name("nope") is None
```

Code generators exist only for `Target.UXN` (`bforge.uxn`) and
`Target.MOS6502` (`bforge.mos6502`).

## Uxn

`bforge.uxn.generate_program(program)` returns the ROM as `bytes`. The ROM
starts by setting the stack pointer and calling `_start` if the program
defines it, otherwise `main`. It then contains the functions, the
intrinsics, the data section and the globals.

The zero page holds the stack pointer at `0x00`, the base pointer at `0x02`
and call arguments from `0x04`; the first argument slot also carries the
return value. A function takes at most 126 parameters, and a call passes at
most 126 arguments.

Names declared `extrn` that the program does not define are taken from the
built-in intrinsics `char`, `lchar`, `uxn_dei`, `uxn_dei2`, `uxn_deo` and
`uxn_deo2`. Any other undefined name raises `LinkError`. Inline assembly
(`Asm`) raises `MissingFeatureError`.

`UxnAssembler` is the lower-level assembler behind this: it appends bytes,
opcodes (`bforge.uxn_ops.UxnOp`, which names all 256 instruction bytes) and
literals, and resolves label references (`write_label_abs`,
`write_label_rel`) when `apply_patches` is called.

```python
from bforge.ir import Program, Func, Instruction, Loc, Return, Literal
from bforge import uxn

loc = Loc("main.b", 1, 1)
program = Program(funcs=[
    Func("main", loc, params_count=0, auto_vars_count=0,
         body=(Instruction(Return(Literal(0)), loc),)),
])
rom = uxn.generate_program(program)
```

## 6502

`bforge.mos6502.generate_program(program, config=None)` returns machine code
as `bytes`. The image begins with a call to `main` followed by `JMP ($FFFC)`,
then the functions, the `char` intrinsic and the data section.

Words are 16 bits: the low byte is kept in A, the high byte in Y. The first
argument of a call is passed in Y:A, the others on the hardware stack.

`parse_config_from_link_flags(flags)` builds a `Config`. The only flag it
knows is `LOAD_OFFSET=<hex>`; any other flag raises `ValueError`.

This back end covers only part of the language. It handles `AutoAssign`,
`Funcall`, `Jmp`, `JmpIfNot`, and `BinaryOp` with `Binop.PLUS` or
`Binop.EQUAL`, on `AutoVar`, `Deref`, `Literal` (0 to 65535) and
`DataOffset` operands; calls go to `External`/`RefExternal` names or through
a loaded address. Every other operation, operator or operand raises
`MissingFeatureError` (or `CodegenError`). A function may have at most 127
auto variables. The only intrinsic is `char`; any other undefined `extrn`
raises `LinkError`.

```python
from bforge.ir import Program, Func, Instruction, Loc, AutoAssign, Literal
from bforge import mos6502

loc = Loc("main.b", 1, 1)
program = Program(funcs=[
    Func("main", loc, params_count=0, auto_vars_count=1,
         body=(Instruction(AutoAssign(1, Literal(42)), loc),)),
])
config = mos6502.parse_config_from_link_flags(["LOAD_OFFSET=C000"])
image = mos6502.generate_program(program, config)
```

## What this package does not do

It has no lexer, parser or front end that reads B source files, and no
command-line program: callers build the `Program` themselves. It writes no
files and runs nothing; it returns the image bytes. There are no code
generators for the x86-64, AArch64 or IR targets listed in `Target`.