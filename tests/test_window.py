"""Tests for exchange windowing and token reconciliation."""

from sessionhub.transcript.models import Interaction, InteractionKind
from sessionhub.transcript.window import filter_last_exchanges, recompute_tokens


def _prompt(text):
    return Interaction(timestamp="t", kind=InteractionKind.PROMPT, content=text)


def _response(text, input_tokens=None, output_tokens=None):
    return Interaction(
        timestamp="t",
        kind=InteractionKind.RESPONSE,
        content=text,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def _tool(name):
    return Interaction(timestamp="t", kind=InteractionKind.TOOL_CALL, content=f"Tool: {name}", tool_name=name)


class TestFilterLastExchanges:
    def test_keeps_from_nth_last_prompt(self):
        items = [_prompt("a"), _response("ra"), _prompt("b"), _tool("Bash"), _response("rb"), _prompt("c")]
        result = filter_last_exchanges(items, 2)
        assert [i.content for i in result] == ["b", "Tool: Bash", "rb", "c"]

    def test_non_positive_count_is_identity(self):
        items = [_prompt("a"), _response("ra")]
        assert filter_last_exchanges(items, 0) == items
        assert filter_last_exchanges(items, -3) == items

    def test_count_at_or_above_prompts_is_identity(self):
        items = [_prompt("a"), _response("ra"), _prompt("b")]
        assert filter_last_exchanges(items, 2) == items
        assert filter_last_exchanges(items, 10) == items

    def test_no_prompts(self):
        items = [_response("orphan")]
        assert filter_last_exchanges(items, 1) == items

    def test_leading_interactions_dropped(self):
        items = [_tool("Read"), _prompt("a"), _response("ra"), _prompt("b")]
        assert filter_last_exchanges(items, 1) == [items[-1]]


class TestRecomputeTokens:
    def test_sums_interactions(self):
        items = [_prompt("a"), _response("r", 10, 5), _response("s", 3, None)]
        assert recompute_tokens(items, 99, 99) == (13, 5)

    def test_falls_back_when_both_zero(self):
        items = [_prompt("a"), _tool("Bash")]
        assert recompute_tokens(items, 40, 12) == (40, 12)

    def test_one_side_nonzero_does_not_fall_back(self):
        items = [_response("r", 0, 7)]
        assert recompute_tokens(items, 40, 12) == (0, 7)
