"""
Command-Line Interface Layer.

This package contains the Typer application, the Rich progress display driven
by engine events, and the console formatters.
"""
