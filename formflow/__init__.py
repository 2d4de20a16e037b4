"""formflow - multi-section form runtime with conditional logic."""

__version__ = "0.1.0"
