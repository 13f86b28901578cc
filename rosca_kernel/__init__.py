"""
Rosca Kernel - persistence and shared services for rotating-savings circles.

- SQLAlchemy models for circles, cycles, contributions and their audit trail
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Kernel services: cycle transitions, event recording, reserve coverage,
  ops alerts
"""

__version__ = "0.1.0"
