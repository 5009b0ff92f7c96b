"""
Prompt builders for each feature.
"""

from typing import Optional

CLINICAL_PERSONA_KEYWORDS = ("physician", "doctor", "nurse", "pharmacist", "clinician")

HEALTH_CHECK_PROMPT = "Say 'OK'"
HEALTH_CHECK_INSTRUCTION = "Reply with strictly 'OK'."


def _audience_line(persona: str) -> str:
    lowered = persona.lower()
    if "student" in lowered:
        return "AUDIENCE: Student. Explain complex terms briefly and focus on the why."
    if any(keyword in lowered for keyword in CLINICAL_PERSONA_KEYWORDS):
        return "AUDIENCE: Clinical expert. Skip basic definitions; focus on management and nuance."
    return "AUDIENCE: Healthcare professional. Standard professional tone."


def build_chat_instruction(
    persona: str,
    country: Optional[str] = None,
    region: Optional[str] = None,
    language: Optional[str] = None,
    short_answer: bool = False,
) -> str:
    """System instruction for a clinical chat turn."""
    lines = [
        "ROLE: Expert clinical consultant.",
        f"CONTEXT: Country = {country or 'International'}, "
        f"Region = {region or 'International'}. User Role = {persona}.",
        "SCOPE: Answer only medical, clinical and healthcare questions; politely refuse others.",
        "GUIDELINES: Prefer the most recent national guidelines for the user's country, "
        "then regional, then international, and say when you fall back.",
        "REFERENCES: Support major claims with named sources and end with a Sources list.",
        f"LANGUAGE: Respond in {language or 'English'}.",
        _audience_line(persona),
    ]
    if short_answer:
        lines.append("CONSTRAINT: Concise mode. Max 3 key points, bullets, no filler.")
    lines.append("FORMAT: Structured markdown (headers, bullets). No tables.")
    return "\n".join(lines)


def build_lookup_prompt(term: str, region: Optional[str] = None, language: Optional[str] = None) -> str:
    target = language or "en-US"
    return (
        f'Define the medical term "{term}".\n'
        f"CONTEXT: Medical dictionary for clinicians ({region or 'International'}).\n"
        f"TARGET_LANGUAGE_CODE: {target}. Translate the term title and write everything in it.\n"
        "FORMAT:\n"
        "## [Term]\n"
        "**Definition**: ...\n"
        "**Clinical Context**: ...\n"
        "**Key Points**:\n- ...\n- ...\n"
        "Keep it concise and professional."
    )


def build_related_prompt(
    last_message: str,
    last_response: str,
    persona: str,
    language: Optional[str] = None,
) -> str:
    language = language or "English"
    return (
        "TASK: Generate 2 short, clinically relevant, logically diverse follow-up questions.\n"
        f"CONTEXT: User is a {persona}. Language: {language}.\n"
        f'USER QUESTION: "{last_message[:200]}"\n'
        f'AI ANSWER: "{last_response[:200]}"\n'
        "RULES: max 8 words each; the first about management or treatment, "
        "the second about differential diagnosis or complications; "
        f"natural phrasing in {language}.\n"
        'OUTPUT: Strictly a JSON object of the form {"questions": ["...", "..."]}.'
    )


def build_transcription_prompt(language_code: Optional[str] = None) -> str:
    return (
        "ROLE: Expert medical transcriptionist.\n"
        "TASK: Transcribe the audio verbatim.\n"
        f"LANG: {language_code or 'en-US'}.\n"
        "RULES:\n"
        "1. Capture exact medical terminology, drug names and dosages.\n"
        "2. Do not paraphrase or summarize; write exactly what is said.\n"
        "3. Ignore background noise and follow only the voice.\n"
        "4. Capitalize proprietary drug names correctly.\n"
        "5. Resolve ambiguous terms to the most likely clinical spelling in context."
    )
