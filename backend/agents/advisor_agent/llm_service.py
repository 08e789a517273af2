"""
llm_service.py - Mistral async generation layer for the advisor persona.

Components:
  build_system_prompt() - persona + qualification script, personalised with contact metadata
  build_messages()      - system prompt + greeting instruction or mapped transcript
  generate_reply()      - async Mistral call wrapped in an asyncio.Semaphore

No module-level asyncio.Semaphore - the semaphore is created in main.py lifespan
and passed as a parameter (avoids RuntimeError: no running event loop at import).

No HTTPException anywhere - this is pure business logic, HTTP layer is routes.py.
"""
import asyncio
import logging
from typing import Sequence

from mistralai import Mistral

from backend.agents.consultation_agent.schemas import ContactMetadata, Turn, TurnRole

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mistral API constants
# ---------------------------------------------------------------------------

MISTRAL_TEMPERATURE = 0.7   # Conversational tone, not citation work
MISTRAL_MAX_TOKENS = 500

NOT_SPECIFIED = "Non spécifié"
EMPTY_REPLY_FALLBACK = "Désolé, je n'ai pas pu générer une réponse."

_ROLE_MAP = {
    TurnRole.advisor: "assistant",
    TurnRole.visitor: "user",
}


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT_TEMPLATE = """Tu es un conseiller en amélioration de crédit pour Crédit-Action, une entreprise québécoise spécialisée dans l'amélioration des cotes de crédit Equifax et TransUnion.

INFORMATIONS DU CLIENT (formulaire de consultation):
- Nom: {name}
- Courriel: {email}
- Téléphone: {phone}
- Défi de crédit principal: {credit_challenge}
- Cote de crédit estimée: {credit_score}

TON RÔLE:
Tu es un conseiller empathique et professionnel. Tu poses des questions pour comprendre la situation financière du client et qualifier sa demande. Tu ne donnes PAS de conseils financiers précis, tu expliques comment Crédit-Action peut aider.

DÉROULEMENT:
1. Accueille le client par son prénom et confirme que sa demande est bien reçue.
2. Reprends le défi de crédit mentionné et demande des précisions.
3. Informe-toi sur:
   - depuis combien de temps dure ce problème de crédit
   - les projets qui demandent un bon crédit (hypothèque, auto, etc.)
   - s'il a consulté son dossier de crédit récemment
4. Présente brièvement la démarche de Crédit-Action (analyse gratuite du dossier, plan d'action personnalisé, suivi continu).
5. Propose un appel avec un spécialiste pour une analyse approfondie.

RÈGLES:
- Réponds toujours en français québécois naturel, sans être trop formel.
- Réponses courtes: 2 à 4 phrases.
- Empathique mais professionnel.
- Ne promets jamais de résultat chiffré (ex: "votre cote va monter de 100 points").
- Si le client s'éloigne du sujet, ramène poliment la conversation vers sa situation de crédit.
- Ne mentionne jamais que tu es une IA ou un agent conversationnel. Tu es un conseiller."""

GREETING_INSTRUCTION_TEMPLATE = (
    "[Le client vient de remplir le formulaire de consultation. Accueille-le "
    "chaleureusement par son prénom ({first_name}) et engage la conversation en "
    "faisant référence à son défi de crédit: \"{credit_challenge}\".]"
)


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def build_system_prompt(metadata: ContactMetadata) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        name=metadata.name,
        email=metadata.email,
        phone=metadata.phone or "",
        credit_challenge=metadata.credit_challenge or NOT_SPECIFIED,
        credit_score=metadata.credit_score or NOT_SPECIFIED,
    )


def build_messages(transcript: Sequence[Turn], metadata: ContactMetadata) -> list[dict]:
    """
    Build the Mistral message list.

    Empty transcript means the session just opened: a single synthetic user turn
    asks for the greeting. Otherwise the full transcript is replayed in order.
    """
    messages = [{"role": "system", "content": build_system_prompt(metadata)}]

    if not transcript:
        messages.append({
            "role": "user",
            "content": GREETING_INSTRUCTION_TEMPLATE.format(
                first_name=metadata.first_name,
                credit_challenge=metadata.credit_challenge or NOT_SPECIFIED,
            ),
        })
        return messages

    for turn in transcript:
        messages.append({"role": _ROLE_MAP[turn.role], "content": turn.text})
    return messages


# ---------------------------------------------------------------------------
# Main async generation function
# ---------------------------------------------------------------------------

async def generate_reply(
    client: Mistral,
    model: str,
    transcript: Sequence[Turn],
    metadata: ContactMetadata,
    semaphore: asyncio.Semaphore,
) -> str:
    """
    Generate the next advisor utterance.

    Applies the shared semaphore for rate-limit protection. SDK errors propagate
    to the caller (routes.py maps them to 502). Empty model content maps to
    EMPTY_REPLY_FALLBACK so the caller always gets a non-blank reply.
    """
    messages = build_messages(transcript, metadata)
    logger.info(
        "Calling Mistral API model=%s turns=%d greeting=%s",
        model, len(transcript), not transcript,
    )

    async with semaphore:
        response = await client.chat.complete_async(
            model=model,
            messages=messages,
            temperature=MISTRAL_TEMPERATURE,
            max_tokens=MISTRAL_MAX_TOKENS,
        )

    content = ""
    if response is not None and response.choices:
        content = response.choices[0].message.content or ""
    if not isinstance(content, str) or not content.strip():
        logger.warning("Mistral returned empty content model=%s", model)
        return EMPTY_REPLY_FALLBACK

    logger.info("Mistral response received reply_len=%d", len(content))
    return content.strip()
