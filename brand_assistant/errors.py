"""Exception hierarchy shared by the assistant's components."""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for all errors raised by the assistant."""


class ValidationError(AssistantError):
    """Malformed caller input (empty or oversized message, missing content)."""


class DimensionMismatchError(AssistantError):
    """Two embeddings of different lengths were compared."""


class ProviderError(AssistantError):
    """An embedding, LLM or storage collaborator failed."""


class StoreError(ProviderError):
    """A durable store rejected or failed a write."""


class DuplicateEmailError(StoreError):
    """A lead with the same email address is already registered."""


class NotSupportedError(AssistantError):
    """The selected backend does not implement the requested capability."""
