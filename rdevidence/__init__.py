"""R&D evidence classification, linking and narrative synthesis."""

__version__ = "0.1.0"
