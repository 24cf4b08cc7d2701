"""
Contact form client.

Client-side half of the contact pipeline: staging of attachments with
preview-handle bookkeeping, local validation and submission to the API.
"""

from .form import ContactFormClient, Notice, TokenProvider
from .staging import (
    AddResult,
    FileStagingStore,
    InMemoryPreviewRegistry,
    LocalFile,
    PreviewHandleError,
    PreviewHandleRegistry,
    StagedFile,
    StagingCondition,
    StagingSnapshot,
)

__all__ = [
    "AddResult",
    "ContactFormClient",
    "FileStagingStore",
    "InMemoryPreviewRegistry",
    "LocalFile",
    "Notice",
    "PreviewHandleError",
    "PreviewHandleRegistry",
    "StagedFile",
    "StagingCondition",
    "StagingSnapshot",
    "TokenProvider",
]
