"""pixelsuite: corner-watermark reversal and adaptive image compression."""

__version__ = "0.1.0"
