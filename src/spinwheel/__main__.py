"""Allow ``python -m spinwheel``."""

from .main import run

if __name__ == "__main__":
    run()
