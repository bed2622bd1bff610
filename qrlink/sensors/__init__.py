"""Frame source and QR decoder."""
