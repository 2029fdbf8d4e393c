[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nachtools"
version = "0.1.0"
description = "Tools for MIPS COFF object files: NOFF and flat conversion, a disassembler, a simulated processor, and teaching data structures"
requires-python = ">=3.10"
dependencies = []
keywords = ["mips", "coff", "noff", "disassembler", "simulator", "stack", "linked-list"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Disassemblers",
    "Topic :: System :: Emulators",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
coff2noff = "nachtools.coff:main_coff2noff"
coff2flat = "nachtools.coff:main_coff2flat"
nachtools-disasm = "nachtools.disasm:main"
nachtools-stacks = "nachtools.stacks:main"

[tool.hatch.build.targets.wheel]
packages = ["nachtools"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
