import pytest

from bforge.targets import Os, Target, name_of_target, target_by_name, target_word_size


@pytest.mark.parametrize(
    "name, target",
    [
        ("fasm-x86_64-windows", Target.FASM_X86_64_WINDOWS),
        ("fasm-x86_64-linux", Target.FASM_X86_64_LINUX),
        ("gas-aarch64-linux", Target.GAS_AARCH64_LINUX),
        ("uxn", Target.UXN),
        ("6502", Target.MOS6502),
        ("ir", Target.IR),
    ],
)
def test_target_by_name(name, target):
    assert target_by_name(name) is target
    assert name_of_target(target) == name


@pytest.mark.parametrize("target", list(Target))
def test_name_round_trip(target):
    assert target_by_name(name_of_target(target)) is target


@pytest.mark.parametrize("name", ["", "UXN", "x86_64", "6502 "])
def test_unknown_name(name):
    assert target_by_name(name) is None


@pytest.mark.parametrize(
    "target, size",
    [
        (Target.FASM_X86_64_WINDOWS, 8),
        (Target.FASM_X86_64_LINUX, 8),
        (Target.GAS_AARCH64_LINUX, 8),
        (Target.UXN, 2),
        (Target.MOS6502, 2),
        (Target.IR, 1),
    ],
)
def test_word_size(target, size):
    assert target_word_size(target) == size


def test_every_target_has_word_size():
    assert all(target_word_size(t) > 0 for t in Target)


def test_os_members():
    members = [Os(o.value) for o in Os]
    assert members == list(Os)
    assert {o.name for o in members} == {"LINUX", "WINDOWS"}