from django_ai_agents.contrib.agents import Conversation
from django_ai_agents.llm import Turn


def test_conversation_appends_in_order():
    conversation = Conversation()
    conversation.append(Turn.user("hi"))
    conversation.extend([Turn.assistant("hello"), Turn.user("bye")])

    assert [turn.content for turn in conversation] == ["hi", "hello", "bye"]
    assert len(conversation) == 3
    assert conversation[-1] == Turn.user("bye")


def test_conversation_turns_is_a_snapshot():
    conversation = Conversation([Turn.user("hi")])
    turns = conversation.turns
    conversation.append(Turn.assistant("hello"))

    assert turns == (Turn.user("hi"),)


def test_last_user_input():
    assert Conversation().last_user_input is None
    conversation = Conversation([Turn.user("first"), Turn.assistant("ok"), Turn.user("second")])
    assert conversation.last_user_input == "second"
