"""
Prompt templates and user-facing strings for chat sessions.
"""

import json
import re
from typing import Any

DEFAULT_TOPIC = "New Conversation"
BOT_HELLO = "Hello! How can I assist you today?"
ERROR_MESSAGE = "Something went wrong, please try again later."
UNAUTHORIZED_MESSAGE = "Unauthorized access, please enter access code in settings page."
IMAGE_PLACEHOLDER = "Generating image..."
IMAGE_DONE_MESSAGE = "Here is your images"
TOPIC_PROMPT = (
    "Please generate a four to five word title summarizing our conversation without any lead-in, "
    "punctuation, quotation marks, periods, symbols, or additional text. Remove enclosing quotation marks."
)
SUMMARIZE_PROMPT = "Summarize our discussion briefly in 200 words or less to use as a prompt for future context."

_TRAILING_PUNCTUATION = re.compile(r"[，。！？”“\"、,.!?]*$")


def get_bot_hello_with_command(command: str) -> str:
    return f"Hello! How can I assist you today? To generate images, use {command} followed by a description."


def get_image_keyword_hint(command: str) -> str:
    return f"Please enter a keyword after `{command}`"


def get_history_prompt(memory_prompt: str) -> str:
    """Wrap the rolling summary so the model reads it as a recap."""
    return f"This is a summary of the chat history between the AI and the user as a recap: {memory_prompt}"


def get_system_info_prompt(model: str, now: str) -> str:
    return f"IMPORTANT: You are a virtual assistant powered by the {model} model, now time is {now}"


def get_web_search_prompt(results: Any, query: str, current_date: str) -> str:
    """Build the prompt sent in place of the user's text when web search is on."""
    return f"""
Using the provided web search results, write a comprehensive reply to the given query.
If the provided search results refer to multiple subjects with the same name, write separate answers for each subject.
Make sure to cite results using `[[number](URL)]` notation after the reference.

Web search json results:
\"\"\"
{json.dumps(results, ensure_ascii=False)}
\"\"\"

Current date:
\"\"\"
{current_date}
\"\"\"

Query:
\"\"\"
{query}
\"\"\"

Reply in the language of the query, using markdown.
"""


def trim_topic(topic: str) -> str:
    """Strip whitespace, enclosing quotes and trailing punctuation from a generated title."""
    topic = topic.strip().strip("\"'“”‘’「」")
    return _TRAILING_PUNCTUATION.sub("", topic).strip()
