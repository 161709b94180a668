"""authcache command line interface."""

from authcache.cli.app import app, main


__all__ = ["app", "main"]
