"""Main entry point when executing quotashield as a package.

This allows running the package using python -m quotashield.
"""

from quotashield.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
