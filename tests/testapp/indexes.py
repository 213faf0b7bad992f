from django_ai_agents.contrib.index import (
    InMemoryProvider,
    ProviderEmbeddingTransformer,
    VectorIndex,
    registry,
)

from .fakes import ScriptedProvider

embedding_provider = ScriptedProvider()


@registry.register()
class TravelGuideIndex(VectorIndex):
    embedding_transformer = ProviderEmbeddingTransformer(embedding_provider)
    storage_provider = InMemoryProvider()
