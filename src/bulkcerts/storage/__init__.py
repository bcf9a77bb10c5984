"""Workspace persistence for accounts and certificate assets."""

from bulkcerts.storage.credentials import CredentialStore

__all__ = ["CredentialStore"]
