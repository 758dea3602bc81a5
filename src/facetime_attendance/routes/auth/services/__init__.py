"""WebAuthn ceremony services."""
