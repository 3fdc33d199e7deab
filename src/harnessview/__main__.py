"""
Main entry point for the harnessview CLI

This allows running the CLI with: python -m harnessview
"""
from .cli import main

if __name__ == "__main__":
    main()
