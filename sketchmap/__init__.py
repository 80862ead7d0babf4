"""Order-preserving thread pool, hash-table sizing, number parsing and a DWARF reader."""

__version__ = "0.1.0"