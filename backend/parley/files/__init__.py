"""Attachment upload storage."""
