"""The five measurement tables, each exposing ``SPEC``, ``clean`` and ``summary``."""

from . import diameter, feeding, pam, retraction, symbionts

REGISTRY = {
    "pam": pam,
    "diameter": diameter,
    "feeding": feeding,
    "retraction": retraction,
    "symbionts": symbionts,
}

__all__ = ["REGISTRY", "diameter", "feeding", "pam", "retraction", "symbionts"]
