"""Inboop backend: Instagram connection and integration status API."""
