"""
Costing Kernel

Pure foundation for lot consumption costing:
- Decimal-only Money and Currency value objects
- The shared allocation / quantity / variance tolerances
- Typed exceptions with machine-readable codes
- Structured JSON logging with selection-scoped context
"""

__version__ = "0.1.0"
