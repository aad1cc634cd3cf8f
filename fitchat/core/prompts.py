from __future__ import annotations

from typing import Any, Optional

from fitchat.core.beverages import BEVERAGE_PROFILES
from fitchat.core.context_builder import ContextDigest
from fitchat.core.tools import MODAL_TYPES, NAVIGATION_ROUTES

PROMPT_VERSION = "fitness-chat/2025-06-v3"
DEFAULT_AVATAR_NAME = "Coach"
MAX_HISTORY_TURNS = 20
MAX_VISIBLE_CONTENT_CHARS = 4000


PERSONA_TEMPLATE = """
You are {avatar_name}, an expert AI fitness coach for TapFit, a smart gym platform. Always refer to yourself as {avatar_name}.

Expertise:
- Exercise form, programming, and injury prevention
- Nutrition, hydration, and meal planning
- Sleep, recovery, and cycle-aware training
- Goal setting, progress tracking, and habit building
"""

RESPONSE_STYLE = """
Response style:
- Motivational but realistic; never shame-based.
- Give specific, actionable advice grounded in the user's own data below.
- Keep answers concise: 2-4 short paragraphs or a short bullet list.
- When the data shows no entries for something, say so plainly instead of guessing.
- Always prioritize safety and suggest a professional for medical concerns.
"""

PAGE_CONTEXT_RULES = """
Page context rules:
- The user is looking at the screen described under CURRENT SCREEN.
- Words like "this", "that", "these" or "here" refer to the Visible Content of that screen.
- Answer questions about the screen from the Visible Content above before using general knowledge.
"""

NAVIGATION_GUIDE = """
Navigation and tool usage:
- When the user asks to go somewhere, open something, or start an activity, call navigate_to_page or open_modal instead of describing how to get there.
- "scan a menu" or "what should I order" -> navigate_to_page with route "/food-scanner?tab=menu".
- "scan my food" or "take a food photo" -> navigate_to_page with route "/food-scanner".
- Call at most one tool per reply and put what you will say in confirmationMessage.
- Only use routes and modals from these lists.
Routes:
{routes}
Modals:
{modals}
"""

LOGGING_DISABLED_NOTE = """
Logging food, drinks, sleep or cycle events requires the user to be signed in. If they ask to log something, tell them to sign in first.
"""

BEVERAGE_GUIDE = """
Beverage logging:
- Call log_beverage whenever the user says they drank something ("I had a glass of water", "just finished a coffee").
- Default sizes: glass=8oz, cup=8oz, can=12oz, bottle=16oz, wine glass=5oz, shot=1.5oz.
- Beverage types: {beverage_types}.
- Alcohol is dehydrating; mention it gently when logging alcoholic drinks.
"""

FOOD_GUIDE = """
Food logging:
- Call log_food when the user says they ate something. Include portions in foodDescription when mentioned.
- Infer mealType from the food and time of day when the user does not say it.
"""

SLEEP_GUIDE = """
Sleep logging:
- Call log_sleep when the user reports last night's sleep.
- qualityScore: 1=terrible, 2=poor, 3=okay, 4=good, 5=great. Negative words ("terrible", "awful", "rough") mean 1 or 2.
- Leave qualityScore out when the user gives no hint about quality.
"""

CYCLE_GUIDE = """
Cycle logging:
- "My period started" -> log_cycle_event with eventType "period_start".
- "My period ended" -> log_cycle_event with eventType "period_end".
- Only pass eventDate (YYYY-MM-DD) when the user names a different day.
"""


def _block(text: str) -> str:
    return text.strip()


def _routes_text() -> str:
    return "\n".join(f"- {route}: {name}" for route, name in NAVIGATION_ROUTES.items())


def _modals_text() -> str:
    return "\n".join(f"- {modal}: {name}" for modal, name in MODAL_TYPES.items())


def render_page_context(page_context: Optional[dict[str, Any]]) -> Optional[str]:
    if not page_context:
        return None
    current_page = str(page_context.get("currentPage") or "").strip()
    description = str(page_context.get("description") or "").strip()
    route = str(page_context.get("route") or "").strip()
    visible = page_context.get("visibleContent")
    if visible is not None and not isinstance(visible, str):
        visible = str(visible)
    visible = (visible or "").strip()[:MAX_VISIBLE_CONTENT_CHARS]
    if not any([current_page, description, route, visible]):
        return None
    lines = ["=== CURRENT SCREEN ==="]
    if current_page:
        lines.append(f"Page: {current_page}")
    if route:
        lines.append(f"Route: {route}")
    if description:
        lines.append(f"Description: {description}")
    if visible:
        lines.append("Visible Content:")
        lines.append(visible)
    lines.append("")
    lines.append(_block(PAGE_CONTEXT_RULES))
    return "\n".join(lines)


def compose_system_prompt(
    avatar_name: Optional[str] = None,
    digest: Optional[ContextDigest] = None,
    page_context: Optional[dict[str, Any]] = None,
    injury_text: Optional[str] = None,
    mood_text: Optional[str] = None,
    logging_enabled: bool = True,
) -> str:
    """Assemble the system prompt.

    Instruction blocks always precede data blocks. Optional sections are left out
    entirely when absent rather than rendered as empty placeholders.
    """
    name = (avatar_name or "").strip() or DEFAULT_AVATAR_NAME
    blocks: list[str] = [
        _block(PERSONA_TEMPLATE.format(avatar_name=name)),
        _block(RESPONSE_STYLE),
    ]
    page_block = render_page_context(page_context)
    if page_block:
        blocks.append(page_block)
    blocks.append(_block(NAVIGATION_GUIDE.format(routes=_routes_text(), modals=_modals_text())))
    if logging_enabled:
        blocks.extend(
            [
                _block(BEVERAGE_GUIDE.format(beverage_types=", ".join(BEVERAGE_PROFILES.keys()))),
                _block(FOOD_GUIDE),
                _block(SLEEP_GUIDE),
                _block(CYCLE_GUIDE),
            ]
        )
    else:
        blocks.append(_block(LOGGING_DISABLED_NOTE))
    if digest is not None:
        blocks.append(digest.history_text)
        blocks.append(digest.today_text)
    if injury_text:
        blocks.append(injury_text)
    if mood_text:
        blocks.append(mood_text)
    return "\n\n".join(blocks)


def build_messages(
    system_prompt: str, history: Optional[list[dict[str, Any]]], message: str
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    turns: list[dict[str, str]] = []
    for item in history or []:
        content = str(item.get("content") or "").strip()
        if not content:
            continue
        role = "assistant" if item.get("type") in {"ai", "assistant"} else "user"
        turns.append({"role": role, "content": content})
    messages.extend(turns[-MAX_HISTORY_TURNS:])
    messages.append({"role": "user", "content": message})
    return messages
