"""Prompt validation for image generation.

Validates text prompts before sending them to a provider.
"""

from vibra.models.prompt import MAX_PROMPT_LENGTH


def validate_prompt(prompt: str) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Text prompt selected for a genre

    Returns:
        Validated prompt with surrounding whitespace removed

    Raises:
        ValueError: If prompt is empty, blank, not a string, or exceeds 3000 characters
    """
    if not prompt:
        raise ValueError("Prompt cannot be empty or None")

    if not isinstance(prompt, str):
        raise ValueError(f"Prompt must be a string, got {type(prompt).__name__}")

    prompt = prompt.strip()
    if not prompt:
        raise ValueError("Prompt cannot be blank")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters (got {len(prompt)})"
        )

    return prompt
