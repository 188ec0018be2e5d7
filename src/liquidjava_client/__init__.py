"""LiquidJava editor client package root."""

__version__ = "0.3.0"

from liquidjava_client.exceptions import ClientError, NeverThrown
from liquidjava_client.invariants import never

__all__ = ["__version__", "ClientError", "NeverThrown", "never"]
