"""SessionHub sync - capture coding-assistant transcripts into SessionHub."""

__version__ = "0.4.0"
