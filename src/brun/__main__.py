"""Allows running brun as `python -m brun`."""

from .cli import main

main()
