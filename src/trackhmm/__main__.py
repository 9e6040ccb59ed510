"""Module entry point: python -m trackhmm ..."""

from __future__ import annotations

from trackhmm.pipeline import main


if __name__ == "__main__":
    raise SystemExit(main())
