"""Allow running as ``python -m mining_engine``."""

from mining_engine.cli import main

if __name__ == "__main__":
    main()
