"""Allow ``python -m verity`` to run the command-line interface."""

from .cli import main

if __name__ == "__main__":  # pragma: no cover - module execution guard
    main()
