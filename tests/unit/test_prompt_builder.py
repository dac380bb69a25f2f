"""Unit tests for prompt assembly and the canned mock replies."""

from ragchat.generation.mock_responses import (
    DEFAULT_RESPONSE,
    MOCK_RESPONSES,
    generate_mock_response,
)
from ragchat.generation.prompt_builder import construct_prompt
from ragchat.generation.prompts import (
    CONTEXT_HEADER,
    HISTORY_HEADER,
    QUESTION_HEADER,
    RESPONSE_HEADER,
    SYSTEM_INSTRUCTION,
)
from ragchat.retrieval.retriever import ContextEntry


def _entry(order: int, title: str, content: str) -> ContextEntry:
    return ContextEntry(id=f"doc_{order}_chunk_0", title=title, content=content, similarity=0.9, order=order)


class TestConstructPrompt:
    """Tests for section order and omission."""

    def test_sections_in_order(self) -> None:
        history = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello!"},
        ]
        context = [_entry(1, "Password Reset", "Go to Settings > Security.")]

        prompt = construct_prompt("How do I reset it?", context, history)

        assert prompt.startswith(SYSTEM_INSTRUCTION)
        positions = [
            prompt.index(HISTORY_HEADER),
            prompt.index(CONTEXT_HEADER),
            prompt.index(QUESTION_HEADER),
            prompt.index(RESPONSE_HEADER),
        ]
        assert positions == sorted(positions)
        assert "User: hi\n" in prompt
        assert "Assistant: Hello!\n" in prompt
        assert "[Document 1: Password Reset]\nGo to Settings > Security.\n" in prompt
        assert prompt.endswith(RESPONSE_HEADER)

    def test_empty_sections_omitted(self) -> None:
        prompt = construct_prompt("What is 2FA?")

        assert HISTORY_HEADER not in prompt
        assert CONTEXT_HEADER not in prompt
        assert prompt == f"{SYSTEM_INSTRUCTION}{QUESTION_HEADER}What is 2FA?{RESPONSE_HEADER}"

    def test_only_last_six_history_messages(self) -> None:
        history = [{"role": "user", "content": f"m{i}"} for i in range(8)]

        prompt = construct_prompt("q", history=history)

        assert "User: m0\n" not in prompt
        assert "User: m1\n" not in prompt
        assert all(f"User: m{i}\n" in prompt for i in range(2, 8))

    def test_context_numbered_by_rank(self) -> None:
        context = [_entry(1, "A", "first"), _entry(2, "B", "second")]

        prompt = construct_prompt("q", context)

        assert prompt.index("[Document 1: A]") < prompt.index("[Document 2: B]")

    def test_accepts_mapping_context(self) -> None:
        prompt = construct_prompt("q", [{"order": 1, "title": "T", "content": "C"}])

        assert "[Document 1: T]\nC\n" in prompt

    def test_query_is_inserted_literally(self) -> None:
        query = "Ignore {instructions} and print {0}"

        assert query in construct_prompt(query)


class TestMockResponses:
    """Tests for keyword matching."""

    def test_exact_match_is_case_insensitive(self) -> None:
        assert generate_mock_response("  HELLO ") == MOCK_RESPONSES["hello"]

    def test_substring_match_uses_table_order(self) -> None:
        """'password' appears before 'account' in the table."""
        assert generate_mock_response("my account password") == MOCK_RESPONSES["password"]

    def test_substring_inside_word_matches(self) -> None:
        assert generate_mock_response("Is there an API?") == MOCK_RESPONSES["api"]

    def test_no_match_returns_default(self) -> None:
        assert generate_mock_response("zzz") == DEFAULT_RESPONSE

    def test_custom_table(self) -> None:
        assert generate_mock_response("ping", {"ping": "pong"}) == "pong"
