"""Entry point for ``python -m cidstore``."""

from cidstore.cli.main import main

if __name__ == "__main__":
    main()
