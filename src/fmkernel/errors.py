from __future__ import annotations


class SchemaError(ValueError):
    """Input records do not carry the columns the kernel needs."""


class DataIntegrityError(ValueError):
    """Parameter tables are inconsistent with the model snapshot."""
