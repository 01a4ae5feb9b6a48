"""Module entrypoint for `python -m invokelauncher`."""

from invokelauncher.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
