"""Groups four bits from the bits decoder into a nibble, LSB first."""

from .pd import Decoder
