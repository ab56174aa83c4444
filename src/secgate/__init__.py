"""SecGate: security policy evaluation and deployment gates."""

__version__ = "0.1.0"
