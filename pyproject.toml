[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bforge"
version = "0.1.0"
description = "Code generators that turn a B-language intermediate representation into Uxn ROMs and 6502 machine code"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "codegen", "uxn", "6502", "b-language", "assembler"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Compilers",
    "Topic :: Software Development :: Code Generators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bforge"]

[tool.pytest.ini_options]
addopts = "-ra"
