"""Entry point for `python -m wabot`."""

from wabot.cli.commands import app

if __name__ == "__main__":
    app()
