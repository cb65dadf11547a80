"""
Optional inference backends for droneaid_kit.

Backends are kept in a separate module so core functionality (pre/post-processing)
stays lightweight and can be used without installing inference runtimes. Each
backend's `infer` maps a (1, H, W, 3) tensor to the raw (scores, boxes) pair.
"""

from __future__ import annotations

__all__ = []
