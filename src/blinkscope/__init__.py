"""BlinkScope: local bootstrapper for the Solana Blinks debugger."""

__version__ = "0.1.0"
