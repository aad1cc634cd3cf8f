from fitchat.core.context_builder import ContextDigest
from fitchat.core.prompts import (
    DEFAULT_AVATAR_NAME,
    MAX_HISTORY_TURNS,
    build_messages,
    compose_system_prompt,
    render_page_context,
)

DIGEST = ContextDigest(
    history_text="=== USER PROFILE ===\nName: Jordan",
    today_text="=== TODAY (2025-06-01) ===\nFood: nothing logged yet today.",
)
PAGE = {
    "currentPage": "Menu Scanner",
    "route": "/food-scanner?tab=menu",
    "description": "Scanned restaurant menu",
    "visibleContent": "Grilled salmon 520 kcal\nCheeseburger 980 kcal",
}


def test_blocks_follow_fixed_order() -> None:
    prompt = compose_system_prompt(
        avatar_name="Nova",
        digest=DIGEST,
        page_context=PAGE,
        injury_text="=== INJURY RISK CONTEXT ===\nInjury risk score: 20/100 (low)",
        mood_text="=== MOOD & READINESS CONTEXT ===\nReadiness score: 70/100",
        logging_enabled=True,
    )
    markers = [
        "You are Nova",
        "Response style:",
        "=== CURRENT SCREEN ===",
        "Navigation and tool usage:",
        "Beverage logging:",
        "Sleep logging:",
        "=== USER PROFILE ===",
        "=== TODAY (2025-06-01) ===",
        "=== INJURY RISK CONTEXT ===",
        "=== MOOD & READINESS CONTEXT ===",
    ]
    positions = [prompt.index(marker) for marker in markers]
    assert positions == sorted(positions)


def test_optional_sections_are_omitted() -> None:
    prompt = compose_system_prompt(digest=DIGEST)
    assert f"You are {DEFAULT_AVATAR_NAME}" in prompt
    assert "CURRENT SCREEN" not in prompt
    assert "INJURY RISK CONTEXT" not in prompt
    assert "MOOD & READINESS CONTEXT" not in prompt
    assert "None" not in prompt


def test_logging_guides_hidden_without_user() -> None:
    prompt = compose_system_prompt(logging_enabled=False)
    assert "Beverage logging:" not in prompt
    assert "requires the user to be signed in" in prompt
    assert "USER PROFILE" not in prompt
    assert "/food-scanner?tab=menu" in prompt


def test_blank_avatar_name_uses_default() -> None:
    assert f"You are {DEFAULT_AVATAR_NAME}" in compose_system_prompt(avatar_name="   ")


def test_page_context_includes_visible_content() -> None:
    block = render_page_context(PAGE)
    assert block is not None
    assert "Page: Menu Scanner" in block
    assert "Visible Content:\nGrilled salmon 520 kcal" in block
    assert '"this"' in block


def test_empty_page_context_renders_nothing() -> None:
    assert render_page_context({}) is None
    assert render_page_context({"currentPage": "  ", "visibleContent": None}) is None


def test_page_context_accepts_structured_content() -> None:
    block = render_page_context({"currentPage": "Dashboard", "visibleContent": {"steps": 8000}})
    assert block is not None
    assert "steps" in block


def test_build_messages_maps_roles_and_drops_blank_turns() -> None:
    history = [
        {"type": "user", "content": "Hi"},
        {"type": "ai", "content": "Hello! How can I help?"},
        {"type": "user", "content": "   "},
        {"type": "assistant", "content": "Still here."},
    ]
    messages = build_messages("SYSTEM", history, "Log a glass of water")
    assert messages[0] == {"role": "system", "content": "SYSTEM"}
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "assistant", "user"]
    assert messages[-1]["content"] == "Log a glass of water"


def test_build_messages_keeps_recent_history() -> None:
    history = [{"type": "user", "content": f"turn {i}"} for i in range(MAX_HISTORY_TURNS + 5)]
    messages = build_messages("SYSTEM", history, "latest")
    assert len(messages) == MAX_HISTORY_TURNS + 2
    assert messages[1]["content"] == "turn 5"
