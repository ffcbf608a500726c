"""
Full prompt/response dumps for debugging model behaviour.

Nothing is printed unless DEBUG_MODE is on. Each dump shows which endpoint
answered, how many earlier turns were replayed (correction re-prompts carry
the rejected answer back), the prompts and the raw answer.
"""
from typing import List, Optional

from bookbatch import config
from bookbatch.utils.unified_logger import Colors

RULE_WIDTH = 80


def should_log_llm_details() -> bool:
    return config.DEBUG_MODE


def _section(title: str, body: str, color: str) -> List[str]:
    rule = f"{Colors.GRAY}{'-' * RULE_WIDTH}{Colors.ENDC}"
    return [f"{color}{title}:{Colors.ENDC}", rule, f"{color}{body}{Colors.ENDC}", rule, ""]


def format_llm_interaction(system_prompt: Optional[str], user_prompt: str, raw_response: str,
                           interaction_type: str = "translation", endpoint: str = "",
                           correction: int = 0, replayed_turns: int = 0) -> str:
    """Render one model exchange as a block of console text."""
    title = f"LLM {interaction_type.upper()}"
    if endpoint:
        title += f" @ {endpoint}"
    if correction:
        title += f" (correction {correction}, {replayed_turns} replayed message(s))"

    banner = f"{Colors.YELLOW}{'=' * RULE_WIDTH}{Colors.ENDC}"
    lines = ["", banner, f"{Colors.YELLOW}DEBUG: {title}{Colors.ENDC}", banner, ""]
    if system_prompt:
        lines += _section("System Prompt", system_prompt, Colors.ORANGE)
    lines += _section("User Prompt", user_prompt, Colors.ORANGE)
    lines += _section("Raw Response", raw_response, Colors.GREEN)
    return "\n".join(lines)


def log_llm_interaction(system_prompt: Optional[str], user_prompt: str, raw_response: str,
                        interaction_type: str = "translation", endpoint: str = "",
                        correction: int = 0, replayed_turns: int = 0):
    """
    Print a model exchange when DEBUG_MODE is enabled.

    Args:
        system_prompt: System prompt, or None when the request had none
        user_prompt: Last user message sent
        raw_response: Answer content before any extraction
        interaction_type: "translation" or "validation"
        endpoint: URL of the server that answered
        correction: Correction round (0 for the first request)
        replayed_turns: Earlier messages resent with a correction
    """
    if not should_log_llm_details():
        return
    print(format_llm_interaction(system_prompt, user_prompt, raw_response, interaction_type,
                                 endpoint, correction, replayed_turns))
