"""Core layer - configuration, errors, retry and the ConnectionAdapter."""

from __future__ import annotations
