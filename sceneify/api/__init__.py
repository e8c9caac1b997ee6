"""HTTP control API and declaration document schemas."""

from .schemas import DeclarationDocument, load_document, parse_document
from .server import create_app

__all__ = ["DeclarationDocument", "create_app", "load_document", "parse_document"]
