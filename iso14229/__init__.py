"""UDS (ISO 14229) definitions with ISO-TP, mock and Linux socket transports for CAN."""

__version__ = "0.7.0"

__all__ = [
    "uds",
    "util",
    "isotp_frames",
    "isotp",
    "isotp_transport",
    "mock",
    "socketcan",
    "isotp_sock",
]