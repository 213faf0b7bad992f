import json
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from ..contrib.index.schema import Document


class TokenDict(dict):
    """Dict where any missing values return their key wrapped in {}.

    This allows Prompt strings with tokens like {name} to be used
    even if a name token is not passed to it.
    """

    def __missing__(self, key):
        return f"{{{key}}}"


class Prompt(str):
    """
    A string subclass representing a prompt template with token rendering.

    Usage:
        Prompt("Hello {name}", name="Alice") -> when used/str() -> "Hello Alice"
    """

    _tokens: dict[str, object]

    def __new__(cls, text: str, /, **tokens):
        obj = super().__new__(cls, text)
        obj._tokens = dict(tokens)
        return obj

    def with_tokens(self, **tokens) -> "Prompt":
        """Return a new Prompt with additional/overridden tokens."""
        return Prompt(super().__str__(), **{**self._tokens, **tokens})

    def render(self, **extra_tokens) -> str:
        tokens = {**self._tokens, **extra_tokens}
        return super().__str__().format_map(TokenDict(tokens))

    def __str__(self) -> str:
        return self.render()

    def __eq__(self, other):
        if isinstance(other, str):
            return str(self) == other
        return super().__eq__(other)

    __hash__ = str.__hash__


CONTEXT_DOCUMENT = Prompt("<file id: {id}>\n{content}\n</file>")

CONTEXT_BLOCK = Prompt("{preamble}\n\n<attachments>\n{documents}\n</attachments>")

EXTRACTION_PREAMBLE = Prompt(
    "{preamble}\n\n"
    "Respond only with a JSON value that conforms to this JSON schema. "
    "Do not add any commentary.\n{schema}"
)

EXTRACTION_RETRY = Prompt(
    "Your previous answer did not match the required schema:\n{error}\n"
    "Reply again with only the corrected JSON value."
)


def render_documents(documents: Iterable["Document"]) -> str:
    """Render documents as attachments, each tagged with its id."""
    return "\n".join(
        CONTEXT_DOCUMENT.render(id=document.id, content=document.content)
        for document in documents
    )


def with_context(preamble: str, documents: Iterable["Document"]) -> str:
    """Append context documents to a preamble.

    The preamble is returned unchanged when there are no documents.
    """
    rendered = render_documents(documents)
    if not rendered:
        return preamble
    return CONTEXT_BLOCK.render(preamble=preamble, documents=rendered).lstrip()


def extraction_preamble(preamble: str, schema: dict[str, Any]) -> str:
    return EXTRACTION_PREAMBLE.render(
        preamble=preamble, schema=json.dumps(schema, indent=2, sort_keys=True)
    ).lstrip()
