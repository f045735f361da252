"""Semantic rejections raised by the record store.

Both derive from ``ValueError`` so callers that only care about "the store
said no" can keep catching ``ValueError``. Retrying either will not change
the outcome.
"""


class NotFoundError(ValueError):
    """Race, participant, bib or finish time does not exist."""


class ConflictError(ValueError):
    """The write would break a uniqueness or one-way-state rule."""
