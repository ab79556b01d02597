# votifier/__main__.py

from .app import cli

cli()
