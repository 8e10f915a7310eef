"""Attachment access for extraction tasks."""

from .attachments import AttachmentFetcher, FetchedAttachment, extract_pdf_text

__all__ = ["AttachmentFetcher", "FetchedAttachment", "extract_pdf_text"]
