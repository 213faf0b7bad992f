import pytest

from django_ai_agents.contrib.index.chunking import WordChunkTransformer
from django_ai_agents.contrib.index.embedding import ProviderEmbeddingTransformer
from django_ai_agents.contrib.index.schema import Document
from django_ai_agents.exceptions import EmbeddingError, EmptyDocumentError, TransportError

from testapp.fakes import ScriptedProvider


class FailingBatchProvider(ScriptedProvider):
    """Fails every call whose batch contains `poison`."""

    def __init__(self, poison, error=None):
        super().__init__()
        self.poison = poison
        self.error = error or TransportError("connection reset")

    async def embed(self, inputs):
        inputs = list(inputs)
        if any(self.poison in text for text in inputs):
            self.embed_calls.append(inputs)
            raise self.error
        return await super().embed(inputs)


class ShortCountProvider(ScriptedProvider):
    async def embed(self, inputs):
        vectors = await super().embed(inputs)
        return vectors[:-1]


def make_transformer(provider, chunk_size=20, batch_size=2):
    return ProviderEmbeddingTransformer(
        provider,
        chunk_transformer=WordChunkTransformer(chunk_size=chunk_size),
        batch_size=batch_size,
    )


@pytest.mark.asyncio
async def test_embed_documents_batches_chunks(provider):
    transformer = make_transformer(provider, chunk_size=10, batch_size=2)
    documents = [
        Document(id="a", content="paris flights are cheap"),
        Document(id="b", content="hotel"),
    ]

    report = await transformer.embed_documents(documents)

    assert report.ok
    assert [chunk.id for chunk in report.embedded] == ["a:0", "a:1", "a:2", "b:0"]
    assert [len(batch) for batch in provider.embed_calls] == [2, 2]
    assert all(
        chunk.dimension == provider.embedding_dimensions for chunk in report.embedded
    )


@pytest.mark.asyncio
async def test_embed_documents_reports_empty_documents(provider):
    transformer = make_transformer(provider)

    report = await transformer.embed_documents(
        [Document(id="empty", content="  "), Document(id="full", content="hotel")]
    )

    assert report.empty_documents == ["empty"]
    assert [chunk.id for chunk in report.embedded] == ["full:0"]
    assert not report.ok
    with pytest.raises(EmptyDocumentError) as excinfo:
        report.raise_for_errors()
    assert excinfo.value.report is report
    assert "empty" in str(excinfo.value)


@pytest.mark.asyncio
async def test_failed_batch_keeps_other_batches():
    provider = FailingBatchProvider("poison")
    transformer = make_transformer(provider, chunk_size=6, batch_size=1)

    report = await transformer.embed_documents(
        [Document(id="doc", content="paris poison london")]
    )

    assert [chunk.id for chunk in report.embedded] == ["doc:0", "doc:2"]
    assert len(report.failed_batches) == 1
    assert report.failed_batches[0].chunk_ids == ["doc:1"]
    assert isinstance(report.failed_batches[0].error, TransportError)
    with pytest.raises(EmbeddingError) as excinfo:
        report.raise_for_errors()
    assert not isinstance(excinfo.value, EmptyDocumentError)
    # one call for each good chunk plus the initial try and retries of the bad one
    assert len(provider.embed_calls) == 2 + 3


@pytest.mark.asyncio
async def test_count_mismatch_stops_with_partial_report():
    transformer = make_transformer(ShortCountProvider(), chunk_size=6, batch_size=2)

    with pytest.raises(EmbeddingError) as excinfo:
        await transformer.embed_documents([Document(id="doc", content="paris london")])

    assert excinfo.value.report is not None
    assert excinfo.value.report.embedded == []


@pytest.mark.asyncio
async def test_embed_string(provider):
    transformer = make_transformer(provider)
    vector = await transformer.embed_string("book a flight")
    assert len(vector) == provider.embedding_dimensions
    assert provider.embed_calls == [["book a flight"]]
