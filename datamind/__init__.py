"""Datamind: generation lifecycle backend for a multi-tool AI front-end."""

__version__ = "0.1.0"
