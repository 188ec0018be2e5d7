"""Invariant markers for the LiquidJava client."""

from __future__ import annotations

from typing import NoReturn

from liquidjava_client.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as unreachable for well-formed callers.

    The env payload is attached to the raised exception for diagnosis only.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)
