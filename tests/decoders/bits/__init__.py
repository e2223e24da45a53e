"""Emits one annotation per sample of a single data line."""

from .pd import Decoder
