"""Editor package containing the document model, transactions and selection tracking."""

from . import document_model, editor_state, selection_gateway, transaction

__all__ = ["document_model", "editor_state", "selection_gateway", "transaction"]
