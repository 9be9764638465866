"""Per-provider prompt templates for note extraction."""
from __future__ import annotations

import json

OPENAI_SYSTEM_PROMPT = (
    "You are an expert AI assistant. Given the following voice note transcription, extract a concise "
    "title, a short summary (max 1000 characters) written from the first-person perspective of the "
    "person recording, and a list of actionable items. Action items are specific tasks, commitments "
    "or important reminders the speaker mentions or clearly implies; for example 'The report is due "
    "Friday' becomes 'Complete report by Friday'. If there are no clear action items, return an empty "
    'array for actionItems. Respond with a valid JSON object with the keys "title", "summary" and '
    '"actionItems", exactly in this format: '
    + json.dumps({"title": "string", "summary": "string", "actionItems": ["string"]})
)

TOGETHER_SYSTEM_PROMPT = (
    "You analyze voice message transcripts and extract key information: a title, a summary "
    "(max 500 characters) in first-person perspective, and action items. Respond ONLY with a valid "
    'JSON object in this format: {"title": "Short Title", "summary": "Summary text", '
    '"actionItems": ["Item 1", "Item 2"]}. Nothing else.'
)

GEMINI_NO_ACTION_ITEMS = "No Action Items found"

GEMINI_PROMPT_TEMPLATE = """
Given the following text, please extract:
1. A concise and descriptive title for the content.
2. A comprehensive summary that captures all key points, decisions, and main topics discussed.
3. A comprehensive list of ALL action items, tasks, responsibilities, commitments, and deadlines mentioned or implied in the text. This includes:
   - Newly assigned tasks or decisions made during the conversation.
   - Pre-existing tasks, commitments, or deadlines that are referenced. Any mentioned due date or obligation is an action item (e.g. "we have a report due next week" becomes "Submit report next week").
   - Explicit action items (e.g. "we need to...", "will do X", "TODO:").
   - Implicit action items (e.g. "someone should look into...", "the next step is to...").
   If no such items are found, return ["{no_items}"] for the "actionItems" field.
Format your response ONLY as a valid JSON object with the keys "title" (string), "summary" (string) and "actionItems" (array of strings).
Do not include any other text outside of the JSON object.

Valid JSON Output Example:
{{
  "title": "Project Update and Next Steps",
  "summary": "The meeting covered the project's current status, recent challenges and next steps.",
  "actionItems": [
    "Draft the proposal by EOD Friday.",
    "Ensure completion of the report due July 4th.",
    "Schedule a follow-up meeting with the design team."
  ]
}}

Text to process:
---
{transcript}
---

Please provide the JSON output.
"""


def build_gemini_prompt(transcript: str) -> str:
    return GEMINI_PROMPT_TEMPLATE.format(transcript=transcript, no_items=GEMINI_NO_ACTION_ITEMS)
