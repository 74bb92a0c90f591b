"""Main entry point when executing promptforge as a package.

This allows running the package using python -m promptforge.
"""

from promptforge.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
