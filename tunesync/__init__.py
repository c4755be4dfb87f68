"""Shared now-playing state for passively synchronized audio clients."""
