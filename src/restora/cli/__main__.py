"""CLI entry point for restora.cli module.

Enables execution via: python -m restora.cli PHOTO
"""

from restora.cli.restore import main

if __name__ == "__main__":
    main()
