"""Capture Shop backend: admin catalog, service booking, cart and checkout."""
