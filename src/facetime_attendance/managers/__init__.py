"""Managers for logging, storage backends and the credential store."""
