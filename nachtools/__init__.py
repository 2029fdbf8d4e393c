"""MIPS COFF conversion, a disassembler, a simulated MIPS processor and small data structures."""

__version__ = "0.1.0"

__all__ = ["__version__"]