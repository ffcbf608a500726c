"""
Prompt builders for translation, correction and validation calls.
"""
import json
from typing import List, NamedTuple, Optional

from bookbatch.config import DEFAULT_SOURCE_LANGUAGE, DEFAULT_TARGET_LANGUAGE


class PromptPair(NamedTuple):
    """A pair of system and user prompts for an LLM call."""
    system: str
    user: str


TRANSLATION_SCHEMA = {
    "type": "object",
    "properties": {
        "translations": {"type": "array", "items": {"type": "string"}},
        "context_summary": {"type": "string"},
    },
    "required": ["translations", "context_summary"],
    "additionalProperties": False,
}

VALIDATION_SCHEMA = {
    "type": "object",
    "properties": {
        "verdict": {"type": "string", "enum": ["translated", "not_translated", "ambiguous"]},
    },
    "required": ["verdict"],
    "additionalProperties": False,
}


# ============================================================================
# SHARED PROMPT SECTIONS
# ============================================================================

_PLACEHOLDER_SECTION = """# PLACEHOLDER PRESERVATION (CRITICAL)

You will encounter placeholders like: [[p_1]], [[/p_1]], [[br_2/]]
These represent HTML/XML tags that have been temporarily replaced.

**MANDATORY RULES:**
1. Keep ALL placeholders EXACTLY as they appear, with both brackets on each side
2. Do NOT translate, modify, remove, or explain them
3. Every opening placeholder [[x_n]] keeps its closing [[/x_n]] after the text it wraps
4. Do NOT add spaces around them unless present in the source

**Example:**
Source: "[[p_1]]Hello [[em_2]]world[[/em_2]]![[/p_1]]"
✅ Correct: "[[p_1]]Bonjour [[em_2]]le monde[[/em_2]] ![[/p_1]]"
❌ WRONG: "Bonjour le monde !" (placeholders removed)
❌ WRONG: "[[p_1]Bonjour [[em_2]]le monde[[/em_2]] ![[/p_1]]" (bracket dropped)
"""


def _output_format_section(item_count: int) -> str:
    return f"""# OUTPUT FORMAT

Respond with a single JSON object and nothing else:
{{"translations": [...], "context_summary": "..."}}

- "translations" holds exactly {item_count} string(s), one per input item, in input order
- "context_summary" is one or two sentences summarizing the story so far, for the next passage
- Do NOT add explanations, comments, notes, or markdown fences"""


# ============================================================================
# PROMPTS
# ============================================================================

def generate_translation_prompt(
    items: List[str],
    previous_summary: Optional[str] = None,
    source_language: str = DEFAULT_SOURCE_LANGUAGE,
    target_language: str = DEFAULT_TARGET_LANGUAGE,
) -> PromptPair:
    """
    Generate the prompt pair for translating placeholder-tagged items.

    Args:
        items: Protected texts to translate
        previous_summary: Rolling context summary from the previous unit
        source_language: Source language name
        target_language: Target language name

    Returns:
        PromptPair: A named tuple with 'system' and 'user' prompts
    """
    system_prompt = f"""You are a professional {target_language} translator and writer.

# TRANSLATION PRINCIPLES

Translate {source_language} to {target_language}.

**PRIORITY ORDER:**
1. Preserve exact names
2. Match original tone and formality
3. Use natural {target_language} phrasing - never word-for-word
4. Translate idioms to {target_language} equivalents

{_PLACEHOLDER_SECTION}
{_output_format_section(len(items))}"""

    context_block = ""
    if previous_summary and previous_summary.strip():
        context_block = f"""# CONTEXT - Story so far

{previous_summary.strip()}

"""

    user_prompt = f"""{context_block}# ITEMS TO TRANSLATE

{json.dumps({"items": items}, ensure_ascii=False, indent=2)}

Translate every item into {target_language} now."""

    return PromptPair(system=system_prompt.strip(), user=user_prompt.strip())


def generate_correction_prompt(
    items: List[str],
    previous_response: str,
    problems: List[str],
    expected_count: int,
) -> str:
    """
    Build the corrective follow-up sent after a structurally invalid response.

    Args:
        items: The items originally requested
        previous_response: The model's invalid answer
        problems: Human-readable list of what was wrong (missing tags, count)
        expected_count: Number of translations required

    Returns:
        User prompt for the retry
    """
    problem_lines = "\n".join(f"- {problem}" for problem in problems)
    return f"""Your previous answer was invalid.

# PREVIOUS ANSWER

{previous_response}

# PROBLEMS

{problem_lines}

# ITEMS

{json.dumps({"items": items}, ensure_ascii=False, indent=2)}

Answer again with exactly {expected_count} translation(s). Copy every listed placeholder
verbatim, including both brackets on each side. Respond with the JSON object only."""


def generate_validation_prompt(
    source_text: str,
    translated_text: str,
    target_language: str = DEFAULT_TARGET_LANGUAGE,
) -> PromptPair:
    """Ask the model whether a suspiciously similar output is really translated."""
    system_prompt = f"""You review machine translation output into {target_language}.

Decide whether the candidate text is a real {target_language} translation of the source.
Proper nouns, numbers, code and short titles may legitimately stay unchanged.

Respond with a single JSON object: {{"verdict": "translated" | "not_translated" | "ambiguous"}}"""

    user_prompt = f"""# SOURCE

{source_text}

# CANDIDATE

{translated_text}"""

    return PromptPair(system=system_prompt.strip(), user=user_prompt.strip())
