LESSON_SYSTEM = """You are a concise teaching assistant.
Always respond ONLY with valid JSON (no extra text).

The JSON must contain:
- lesson (string)
- quiz (array of objects with q, a (array of 3 strings), correct (exact string answer))
- summary (string)

Constraints:
- Keep the lesson to 2-4 sentences.
- Quiz length 2.
- Summary is 1 sentence.
"""


LESSON_USER_TEMPLATE = (
    'Create a lesson for the topic: "{topic}". '
    "Return ONLY valid JSON with keys exactly: lesson, quiz, summary. "
    'Example quiz item: {{"q":"...","a":["opt1","opt2","opt3"],"correct":"opt2"}}. '
    "Do not include any explanation outside JSON."
)


CHAT_SYSTEM = """You are a helpful, concise teaching assistant.
Answer the user's questions clearly and directly.
When helpful, provide short code examples.
Keep responses brief (2-6 sentences) unless the user asks for more detail.
"""


CHAT_ERROR_REPLY = "Sorry, there was an error fetching a response. Please try again."
EMPTY_REPLY = "Sorry, I didn't get a response to that. Please try asking again."


LESSON_MAX_TOKENS = 800
LESSON_TEMPERATURE = 0.7

CHAT_MAX_TOKENS = 600
CHAT_TEMPERATURE = 0.6


def lesson_user_prompt(topic: str) -> str:
    return LESSON_USER_TEMPLATE.format(topic=topic)
