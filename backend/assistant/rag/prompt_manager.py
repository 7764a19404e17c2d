"""
Prompt Manager — persona prompts, context block and title prompt.

System message layout sent to the completion service:

    <base prompt>                      ← shared CSrental assistant preamble
    <persona section>                  ← CeeS (TECHNICAL) or ChriS (INKOOP)
    \n\nRelevante informatie uit documenten:
    - <filename>: <first 200 chars>...  ← one line per retrieved chunk,
    - ...                                  while within the token budget

The context block is omitted entirely when nothing was retrieved. GENERAL
and any unrecognised mode get the base prompt only.
"""

from __future__ import annotations

import logging
from typing import Final, Sequence

from langchain_core.messages import HumanMessage, SystemMessage

from assistant.models.enums import ChatMode
from assistant.processing.chunking import estimate_tokens
from assistant.rag.retriever import RetrievedChunk

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Persona templates
# ---------------------------------------------------------------------------

BASE_PROMPT: Final[str] = (
    "Je bent een AI assistent voor CSrental, een bedrijf gespecialiseerd in verhuur "
    "van bouwmachines en technische apparatuur. Je communiceert altijd in het "
    "Nederlands en bent behulpzaam, professioneel en accuraat."
)

_TECHNICAL_SECTION: Final[str] = """\
Je bent CeeS, de technische kennis chatbot. Je helpt met:
- Technische vragen over bouwmachines en apparatuur
- Installatiehandleidingen en procedures
- Troubleshooting en onderhoud
- Veiligheidsinstructies
- Technische specificaties
- Best practices voor monteurs en technici

Geef altijd praktische, veilige en accurate technische adviezen. Als je niet zeker \
bent van een antwoord, geef dit eerlijk aan en adviseer om contact op te nemen met \
een technische specialist."""

_INKOOP_SECTION: Final[str] = """\
Je bent ChriS, de inkoop AI chatbot. Je helpt met:
- Prijsvergelijkingen van leveranciers
- Productspecificaties en alternatieven
- Inkoopprocessen en procedures
- Leveranciersinformatie
- Kostenanalyses
- Contractvoorwaarden

Focus op het optimaliseren van inkoop beslissingen, kostenbesparing en efficiëntie. \
Geef concrete adviezen voor betere inkoopresultaten."""

_PERSONA_SECTIONS: Final[dict[ChatMode, str]] = {
    ChatMode.TECHNICAL: _TECHNICAL_SECTION,
    ChatMode.INKOOP:    _INKOOP_SECTION,
}

CONTEXT_HEADER: Final[str] = "\n\nRelevante informatie uit documenten:\n"
CONTEXT_SNIPPET_CHARS: Final[int] = 200

# ---------------------------------------------------------------------------
# Title generation
# ---------------------------------------------------------------------------

TITLE_SYSTEM_PROMPT: Final[str] = (
    "Genereer een korte, beschrijvende titel (max 50 karakters) voor deze chat "
    "conversatie in het Nederlands. Geef alleen de titel terug, geen extra tekst."
)
DEFAULT_TITLE: Final[str]     = "Nieuwe Chat"
TITLE_MAX_CHARS: Final[int]   = 50
TITLE_INPUT_CHARS: Final[int] = 200


def system_prompt(mode: ChatMode | str | None) -> str:
    """Persona instructions for mode; the base prompt for anything unknown."""
    try:
        resolved = ChatMode(mode) if mode is not None else None
    except ValueError:
        resolved = None

    section = _PERSONA_SECTIONS.get(resolved) if resolved is not None else None
    if section is None:
        if resolved is not ChatMode.GENERAL:
            logger.warning("Unknown chat mode, using base prompt | mode=%r", mode)
        return BASE_PROMPT
    return f"{BASE_PROMPT}\n\n{section}"


def context_line(chunk: RetrievedChunk) -> str:
    return f"- {chunk.filename}: {chunk.content[:CONTEXT_SNIPPET_CHARS]}...\n"


def fit_context(chunks: Sequence[RetrievedChunk], token_budget: int) -> list[RetrievedChunk]:
    """
    Leading chunks whose context lines fit token_budget, header included.
    Lines are taken in relevance order; the first that does not fit ends the block.
    """
    used: list[RetrievedChunk] = []
    block = CONTEXT_HEADER
    for chunk in chunks:
        line = context_line(chunk)
        if estimate_tokens(block + line) > token_budget:
            logger.debug(
                "Context budget reached | budget=%d used_lines=%d dropped=%d",
                token_budget, len(used), len(chunks) - len(used),
            )
            break
        block += line
        used.append(chunk)
    return used


def format_context(chunks: Sequence[RetrievedChunk], token_budget: int) -> str | None:
    """Context block for the chunks that fit; None when no line fits."""
    used = fit_context(chunks, token_budget)
    if not used:
        return None
    return CONTEXT_HEADER + "".join(context_line(chunk) for chunk in used)


def build_system_message(
    mode:         ChatMode | str | None,
    chunks:       Sequence[RetrievedChunk],
    token_budget: int,
) -> SystemMessage:
    content = system_prompt(mode)
    context = format_context(chunks, token_budget)
    if context:
        content += context
    return SystemMessage(content=content)


def title_messages(first_user_message: str) -> list:
    return [
        SystemMessage(content=TITLE_SYSTEM_PROMPT),
        HumanMessage(content=f"Eerste bericht: {first_user_message[:TITLE_INPUT_CHARS]}"),
    ]


def normalize_title(raw: str | None) -> str:
    """Strip, fall back to the placeholder, ellipsize past 50 chars."""
    title = (raw or "").strip()
    if not title:
        return DEFAULT_TITLE
    if len(title) > TITLE_MAX_CHARS:
        return title[: TITLE_MAX_CHARS - 3] + "..."
    return title
