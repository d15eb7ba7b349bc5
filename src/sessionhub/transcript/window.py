"""Exchange window filtering and token reconciliation."""

from collections.abc import Sequence

from sessionhub.transcript.models import Interaction, InteractionKind


def filter_last_exchanges(interactions: Sequence[Interaction], count: int) -> list[Interaction]:
    """Keep everything from the ``count``-th-from-last prompt onward.

    Returns the input unchanged when ``count`` <= 0 or there are no more
    than ``count`` prompts.
    """
    interactions = list(interactions)
    if count <= 0:
        return interactions

    prompt_indexes = [
        index for index, interaction in enumerate(interactions)
        if interaction.kind == InteractionKind.PROMPT
    ]
    if not prompt_indexes or count >= len(prompt_indexes):
        return interactions

    return interactions[prompt_indexes[-count]:]


def recompute_tokens(
    interactions: Sequence[Interaction],
    fallback_input: int,
    fallback_output: int,
) -> tuple[int, int]:
    """Sum per-interaction tokens, falling back to session totals when both are zero."""
    input_tokens = sum(i.input_tokens or 0 for i in interactions)
    output_tokens = sum(i.output_tokens or 0 for i in interactions)
    if input_tokens == 0 and output_tokens == 0:
        return fallback_input, fallback_output
    return input_tokens, output_tokens
