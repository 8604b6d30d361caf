"""roundclaim — round-based token claim distribution engine."""

__version__ = "0.1.0"
