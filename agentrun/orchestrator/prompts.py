"""
Prompt text used by the coordinator and the execution manager.
"""

SCHEDULED_TASK_SUFFIX = (
    "IMPORTANT: You are executing a scheduled task. Do not ask clarification "
    "questions. Use your best judgment and proceed autonomously. If you need to "
    "inform the user of something, include it in your response."
)

SUMMARY_BLOCK = (
    "{base}\n\n"
    "--- Earlier conversation summary ---\n"
    "{summary}\n"
    "--- End of summary ---"
)

SUMMARIZE_PROMPT = (
    "Summarize the following conversation concisely, preserving key topics, "
    "decisions, user preferences, and any pending tasks.\n\n{transcript}"
)

SUMMARIZER_SYSTEM_PROMPT = "You are a precise summarizer of conversations."

NOT_ENOUGH_HISTORY = "Not enough conversation history to summarize."
SUMMARIZE_SUCCESS = "Conversation summarized successfully."
SUMMARIZE_FAILED = "Summarization failed -- conversation unchanged."

CANCELLED_NOTE = (
    "[The previous response was cancelled by the user. Do not continue or retry "
    "the cancelled task unless explicitly asked.]"
)

MEMORY_FLUSH_PROMPT = (
    "The conversation below is about to be compacted. Before that happens, save "
    "any durable information worth keeping (user preferences, facts about the "
    "user, decisions, open tasks) using the available memory tools. If nothing "
    "is worth saving, reply with a short confirmation and call no tools.\n\n"
    "{transcript}"
)


def build_system_prompt(base: str, scheduled: bool = False, summary: str = None) -> str:
    """Base prompt, with the scheduled-task suffix and the summary block when present."""
    prompt = base or ""
    if scheduled:
        prompt = f"{prompt}\n\n{SCHEDULED_TASK_SUFFIX}" if prompt else SCHEDULED_TASK_SUFFIX
    if summary:
        prompt = SUMMARY_BLOCK.format(base=prompt, summary=summary)
    return prompt
