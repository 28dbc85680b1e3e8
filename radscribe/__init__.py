"""Radscribe: clinician input to template-conformant reports, with PII gating."""

__version__ = "0.3.0"
