"""System prompt helpers for chain-of-thought levels."""

from typing import Optional

from ..logger import get_logger

logger = get_logger(__name__)

_CHAIN_OF_THOUGHT_INSTRUCTIONS = {
    1: "When a question is complex, think it through step by step before giving the final answer.",
    2: (
        "Answer questions that need deeper thought using the following format:\n"
        "Thinking: [your analysis, including the steps and the reasoning]\n"
        "Answer: [your final answer]"
    ),
    3: (
        "You are an expert in critical thinking. For complex questions use this framework:\n"
        "1. Problem analysis: determine the problem that really needs solving\n"
        "2. Solution paths: list every possible solution\n"
        "3. Evaluation: weigh the strengths and weaknesses of each solution\n"
        "4. Conclusion: give the most suitable answer and explain why"
    ),
}


def enhance_system_prompt(system_prompt: Optional[str], level: int) -> str:
    """Append chain-of-thought instructions to a system prompt.

    Level 2 asks for the ``Thinking:`` / ``Answer:`` layout that the chunk normalizer
    splits into thinking and answer text.

    Args:
        system_prompt: The configured system prompt, may be empty.
        level: Chain-of-thought level, 0 disables the enhancement. Levels above 3 use level 3.

    Returns:
        The enhanced system prompt.
    """
    prompt = system_prompt or ""
    if not level or level <= 0:
        return prompt

    instruction = _CHAIN_OF_THOUGHT_INSTRUCTIONS[min(level, 3)]
    if prompt:
        prompt += "\n\n"
    logger.debug(f"Applied chain-of-thought level {level} to the system prompt.")
    return prompt + instruction
