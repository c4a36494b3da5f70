"""Prompt templates for brain-dump distillation."""

SYSTEM_PROMPT = (
    "You are a helpful productivity assistant that extracts actionable tasks from "
    "brain dumps. Always return valid JSON only, no markdown, no code blocks."
)

RESPONSE_SCHEMA = """{
  "sections": [
    {
      "title": "Section Name",
      "bullets": [
        "Action item 1",
        "Action item 2",
        "Action item 3"
      ]
    }
  ]
}"""

GUIDELINES = """Guidelines:
- Extract key ideas from the input
- For each idea: create 3-5 concise practical bullets (minimum 3)
- Create 2-5 sections based on natural categories in the content
- Make items clear and actionable (start with verbs when appropriate)
- Organize related tasks together
- No commentary, no prose outside JSON
- If the input is very short or unclear, still create at least one section with reasonable action items"""


def build_prompt(text: str) -> tuple[str, str]:
    """Render brain-dump text into the (system, user) prompt pair.

    The text is embedded as-is.
    """
    user_prompt = f"""You are a productivity assistant. Analyze the following brain dump and extract actionable tasks, organizing them into logical categories with descriptive section titles.

Brain dump:
{text}

Return ONLY a valid JSON object in this exact format (no markdown, no code blocks, just the raw JSON):
{RESPONSE_SCHEMA}

{GUIDELINES}"""
    return SYSTEM_PROMPT, user_prompt
