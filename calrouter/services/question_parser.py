"""Custom question parser — turns Calendly Q&A pairs into a flat key/answer map.

"What's your Budget?" and "whats your budget" both normalize to
``whats_your_budget``, so downstream tools can map fields without caring
about punctuation or casing in the booking form.
"""

import logging
import re

log = logging.getLogger("calrouter.enrichment")

MAX_KEY_LENGTH = 50

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_question(question: str) -> str:
    key = _NON_ALNUM.sub("", question.lower()).strip()
    return _WHITESPACE.sub("_", key)[:MAX_KEY_LENGTH]


def parse_custom_questions(payload) -> dict[str, str] | None:
    """Map normalized question keys to answer strings.

    Returns None when the payload has no usable questions. Later duplicates
    of the same normalized key overwrite earlier ones. Never raises.
    """
    try:
        questions = (payload.get("payload") or {}).get("questions_and_answers")
        if not isinstance(questions, list) or not questions:
            return None

        parsed: dict[str, str] = {}
        for entry in questions:
            if not isinstance(entry, dict):
                continue
            question = entry.get("question")
            if not question or not isinstance(question, str):
                continue

            key = normalize_question(question)
            if not key:
                continue

            answer = entry.get("answer")
            parsed[key] = "" if answer is None else str(answer)

        return parsed or None
    except Exception as e:
        log.error(f"Question parsing failed: {e}")
        return None
