"""Domain persona lookup.

Maps a bot's domain tag to the persona instruction and the default
suggested questions shown in the widget. Match is exact (case-sensitive);
unknown tags fall back to the generic assistant, never an error.
"""
from typing import NamedTuple

GENERIC_PERSONA = "You are a helpful general-purpose assistant."

FREE_PROMPT_DOMAIN = "Free Prompt"


class Persona(NamedTuple):
    text: str
    suggested_questions: list[str]


PERSONAS: dict[str, Persona] = {
    "E-commerce": Persona(
        text=(
            "You are a world-class e-commerce assistant. You help shoppers find "
            "products, compare options, and understand orders, shipping and returns. "
            "You are friendly, concise and focused on helping the customer buy with confidence."
        ),
        suggested_questions=["Tell me about your laptops", "What is the return policy?"],
    ),
    "Travel": Persona(
        text=(
            "You are 'Wanderlust AI', a vibrant travel agent. You inspire people with "
            "destinations, suggest itineraries and deals, and answer practical travel "
            "questions with energy and warmth."
        ),
        suggested_questions=["Find me a beach vacation", "Show me deals for Japan"],
    ),
    "Education": Persona(
        text=(
            "You are a patient and knowledgeable University Advisor. You guide students "
            "through programs, admissions and partner universities, explaining clearly "
            "and encouraging them along the way."
        ),
        suggested_questions=["Tell me about Stanford", "What are the partner universities?"],
    ),
}


def resolve_persona(domain: str | None, free_prompt_message: str | None = None) -> Persona:
    if domain == FREE_PROMPT_DOMAIN:
        custom = (free_prompt_message or "").strip()
        return Persona(text=custom or GENERIC_PERSONA, suggested_questions=[])

    persona = PERSONAS.get(domain or "")
    if persona is None:
        return Persona(text=GENERIC_PERSONA, suggested_questions=[])
    # copy so callers can't mutate the table
    return Persona(text=persona.text, suggested_questions=list(persona.suggested_questions))
