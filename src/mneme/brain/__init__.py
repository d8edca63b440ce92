"""Mneme brain module.

Contains the language-model and embedding capability clients and the
protocols the memory layer is written against.
"""

from mneme.brain.embeddings import OpenAIEmbeddingProvider
from mneme.brain.llm_clients import LLMClient, LLMResponse, OpenAIChatClient
from mneme.brain.protocols import (
    DocumentStoreProtocol,
    EmbeddingProviderProtocol,
    FactSinkProtocol,
    LanguageModelProtocol,
    SummarizerProtocol,
    VectorStoreProtocol,
)

__all__ = [
    # Capability clients
    "LLMClient",
    "LLMResponse",
    "OpenAIChatClient",
    "OpenAIEmbeddingProvider",
    # Protocols for DI
    "LanguageModelProtocol",
    "EmbeddingProviderProtocol",
    "VectorStoreProtocol",
    "DocumentStoreProtocol",
    "FactSinkProtocol",
    "SummarizerProtocol",
]
