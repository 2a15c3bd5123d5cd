"""
Module entry point for: python -m eqr

Allows running the engine directly as a module:
    python -m eqr decode <hex> [options]
    python -m eqr exercises <hex> --tag PLUS
    python -m eqr evaluate "<expression>"
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
