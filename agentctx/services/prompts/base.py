# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Markers and summarization prompts used by context compaction.

Markers are appended to clamped content so the model knows the text is
partial and how to ask for the rest. Prompts follow the structured
checkpoint format so a later model can resume work from the summary alone.
"""

from typing import Optional

DEFAULT_SUMMARY_FALLBACK = "No prior history."
COMPACTION_PREFIX = "[compaction] Previous conversation summary:"

HARD_CAP_SUFFIX = (
    "[Tool output truncated - exceeded hard limit (50KB / 2000 lines). "
    "Request specific sections or use offset/limit parameters.]"
)
TRUNCATION_SUFFIX = (
    "[Content truncated - original was too large for the model's context window. "
    "The content above is a partial view. If you need more, request specific sections "
    "or use offset/limit parameters to read smaller chunks.]"
)
PERSISTENCE_SUFFIX = (
    "[Content truncated during persistence - exceeded hard limit (50KB / 2000 lines). "
    "Use offset/limit parameters or request specific sections for large content.]"
)
PERSISTENCE_NORMALIZED_NOTE = "[Tool result normalized during persistence to enforce output caps.]"

MERGE_SUMMARIES_INSTRUCTIONS = (
    "Merge these partial summaries into a single cohesive summary. Preserve decisions, "
    "TODOs, open questions, and any constraints."
)

COMPACTION_SYSTEM_PROMPT = (
    "You are a context summarization assistant. Your task is to read a conversation "
    "between a user and an AI assistant, then produce a structured summary "
    "following the exact format specified.\n\n"
    "Do NOT continue the conversation. Do NOT respond to any questions in the "
    "conversation. ONLY output the structured summary."
)

COMPACTION_PROMPT = """<conversation>
{conversation}
</conversation>

The messages above are a conversation to summarize. Create a structured context checkpoint summary that another LLM will use to continue the work.

Use this EXACT format:

## Goal
[What is the user trying to accomplish? Can be multiple items if the session covers different tasks.]

## Constraints & Preferences
- [Any constraints, preferences, or requirements mentioned by user]
- [Or "(none)" if none were mentioned]

## Progress
### Done
- [x] [Completed tasks/changes]

### In Progress
- [ ] [Current work]

### Blocked
- [Issues preventing progress, if any]

## Key Decisions
- **[Decision]**: [Brief rationale]

## Next Steps
1. [Ordered list of what should happen next]

## Critical Context
- [Any data, examples, or references needed to continue]
- [Or "(none)" if not applicable]

Keep each section concise. Preserve exact file paths, function names, and error messages."""

COMPACTION_UPDATE_PROMPT = """<conversation>
{conversation}
</conversation>

<previous-summary>
{previous_summary}
</previous-summary>

The messages above are NEW conversation messages to incorporate into the existing summary provided in <previous-summary> tags.

Update the existing structured summary with new information. RULES:
- PRESERVE all existing information from the previous summary
- ADD new progress, decisions, and context from the new messages
- UPDATE the Progress section: move items from "In Progress" to "Done" when completed
- UPDATE "Next Steps" based on what was accomplished
- PRESERVE exact file paths, function names, and error messages
- If something is no longer relevant, you may remove it

Use the same section headings as the previous summary: Goal, Constraints & Preferences,
Progress (Done / In Progress / Blocked), Key Decisions, Next Steps, Critical Context.

Keep each section concise. Preserve exact file paths, function names, and error messages."""


def build_summary_prompt(
    conversation: str,
    previous_summary: Optional[str] = None,
    instructions: Optional[str] = None,
) -> str:
    """Build the user prompt for one summarization call.

    Args:
        conversation (str): Serialized conversation text.
        previous_summary (Optional[str]): Rolling summary produced by the
            previous chunk, if any.
        instructions (Optional[str]): Extra focus instructions appended to
            the prompt.

    Returns:
        str: The formatted prompt.
    """
    if previous_summary:
        prompt = COMPACTION_UPDATE_PROMPT.format(
            previous_summary=previous_summary,
            conversation=conversation,
        )
    else:
        prompt = COMPACTION_PROMPT.format(conversation=conversation)
    if instructions:
        prompt = f"{prompt}\n\n<instructions>\n{instructions}\n</instructions>"
    return prompt
