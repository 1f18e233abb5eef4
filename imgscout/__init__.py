"""imgscout — embedded image discovery for untrusted HTTP response bodies."""

__version__ = "1.0.0"
