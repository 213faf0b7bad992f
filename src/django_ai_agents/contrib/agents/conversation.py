from typing import Iterable, Iterator

from django_ai_agents.llm.messages import Role, Turn


class Conversation:
    """Append-only history of turns.

    Agents read a conversation and append to it only once an invocation succeeds.
    """

    def __init__(self, turns: Iterable[Turn] = ()):
        self._turns: list[Turn] = list(turns)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def append(self, turn: Turn):
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]):
        self._turns.extend(turns)

    @property
    def last_user_input(self) -> str | None:
        for turn in reversed(self._turns):
            if turn.role is Role.USER:
                return turn.content
        return None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __getitem__(self, index):
        return self._turns[index]

    def __repr__(self):
        return f"<Conversation: {len(self._turns)} turns>"
