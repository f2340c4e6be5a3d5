"""Command-line interface (``cronspine``)."""
