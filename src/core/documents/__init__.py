from src.core.documents.number_generator import (
    DocumentPrefix,
    format_document_number,
    get_document_number,
)

__all__ = ["DocumentPrefix", "format_document_number", "get_document_number"]
