"""User-facing strings injected into prompts, per language."""
from typing import Dict

from docchat import config

STRINGS: Dict[str, Dict[str, str]] = {
    "en": {
        "role_user": "User",
        "role_assistant": "Assistant",
        "role_system": "System",
        "no_history": "No previous history.",
        "no_context": "No relevant information was found in the document.",
        "fragment_header": "[Fragment {number} - Similarity: {similarity:.1f}%]",
    },
    "es": {
        "role_user": "Usuario",
        "role_assistant": "Asistente",
        "role_system": "Sistema",
        "no_history": "Sin historial previo.",
        "no_context": "No se encontró información relevante en el documento.",
        "fragment_header": "[Fragmento {number} - Similitud: {similarity:.1f}%]",
    },
}


def text(key: str, language: str = None) -> str:
    """Look up a string for the configured language, falling back to English."""
    table = STRINGS.get(language or config.LANGUAGE, STRINGS["en"])
    return table[key]


def role_label(role: str, language: str = None) -> str:
    return text(f"role_{role}", language)
