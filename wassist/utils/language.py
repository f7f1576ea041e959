"""Language policy for user-facing agent output.

The caller passes a language code per request (detected from the user's
message upstream). The directive built here is rendered into the system
instruction of every agent loop and into each multi-step step prompt, so
all partial outputs of one request answer in the same language.
"""

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "he": "Hebrew (עברית)",
    "iw": "Hebrew (עברית)",
    "ar": "Arabic (العربية)",
    "ru": "Russian (Русский)",
    "fr": "French (Français)",
    "de": "German (Deutsch)",
    "es": "Spanish (Español)",
}


def _lang_name(lang: str) -> str:
    return LANGUAGE_NAMES.get(lang.lower(), lang)


def response_directive(language: str | None) -> str:
    """Build the directive telling the model which language to answer in.

    Args:
        language: The language code of the user's request, or None when it
                  could not be detected.

    Returns:
        A directive string appended to the system instruction.
    """
    if language:
        return (
            f"[Language Policy] Respond in {_lang_name(language)}. "
            f"Tool arguments that describe content (prompts, captions) may stay in the user's wording."
        )
    return (
        "[Language Policy] Respond in the same language as the user's message."
    )
