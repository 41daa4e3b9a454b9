"""Discovery of Zero devices over CoAP and firmware management over SMP."""

__version__ = "0.1.0"