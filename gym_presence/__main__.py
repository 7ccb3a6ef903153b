"""Module entry point: python -m gym_presence ..."""

from __future__ import annotations

from gym_presence.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
