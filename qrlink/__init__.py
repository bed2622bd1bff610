"""QR scanning service that shows text payloads and joins Wi-Fi networks."""

__version__ = "0.1.0"
