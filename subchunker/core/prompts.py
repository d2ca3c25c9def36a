"""
Prompt assembly for chunk requests.
Only the layout lives here; wording can be overridden by the caller.
"""

SYSTEM_PROMPT_TRANSLATE = (
    "You are a professional subtitle translator. Output MUST be valid WebVTT cues "
    "with UNCHANGED timecodes.\n"
    "Rules:\n"
    "- Preserve timing and line breaks exactly as in the input cues.\n"
    "- Do NOT add, remove, merge, or split cues.\n"
    "- Every cue must contain translated text; never leave cue text blank.\n"
    "- Return ONLY the WebVTT cues. No explanations.\n"
)

PROMPT_TRANSCRIBE = (
    "Transcribe the attached media to WebVTT. Preserve original language and timing "
    "with accurate timestamps relative to the start of the segment. Return ONLY WebVTT text."
)

_GLOSSARY_HEADER = "GLOSSARY (use these translations consistently):"
_SUMMARY_HEADER = "SUMMARY (background for the whole file):"
_CONTEXT_HEADER = "CONTEXT (preceding source cues, for reference only; do NOT output these):"
_CHUNK_HEADER = "CUES TO TRANSLATE into <target>:"


def system_prompt(custom: str | None = None) -> str:
    return custom.strip() if custom and custom.strip() else SYSTEM_PROMPT_TRANSLATE


def build_user_prompt(target_lang: str, chunk_vtt: str, context_vtt: str = "",
                      glossary: str | None = None, summary: str | None = None) -> str:
    parts = []
    if glossary and glossary.strip():
        parts.append(f"{_GLOSSARY_HEADER}\n{glossary.strip()}")
    if summary and summary.strip():
        parts.append(f"{_SUMMARY_HEADER}\n{summary.strip()}")
    if context_vtt.strip():
        parts.append(f"{_CONTEXT_HEADER}\n{context_vtt.strip()}")
    parts.append(f"{_CHUNK_HEADER.replace('<target>', target_lang)}\n{chunk_vtt.strip()}")
    return "\n\n".join(parts)
