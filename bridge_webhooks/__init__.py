"""Bridge.xyz webhook tooling: signature verification, receiver, admin CLI."""

__version__ = "0.1.0"
