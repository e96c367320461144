"""Retrieval components."""

from .search import Retriever
from .vector_store import VectorStore

__all__ = ["Retriever", "VectorStore"]
