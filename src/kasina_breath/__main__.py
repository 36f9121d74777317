"""Entry point for python -m kasina_breath."""

from kasina_breath.cli import cli

if __name__ == "__main__":
    cli()
