"""sdkrepo - SDK repository source resolution engine."""

__version__ = "0.1.0"
