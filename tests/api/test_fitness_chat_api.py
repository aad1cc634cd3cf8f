from datetime import datetime, timedelta
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

from conftest import FAKE_PNG, FakeScenario, utc_today
from fitchat.db.models import CycleTracking, FoodEntry, SleepLog, WaterIntake
from fitchat.services.storage import LocalObjectStorage, get_object_storage


def _chat(client, message: str, **extra):
    payload = {"message": message, "conversationHistory": []}
    payload.update(extra)
    return client.post("/fitness-chat", json=payload)


def test_preflight_returns_cors_headers(client) -> None:
    response = client.options(
        "/fitness-chat",
        headers={
            "Origin": "https://app.tapfit.test",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type, x-requested-with",
        },
    )
    assert response.status_code == 200
    assert response.text == ""
    assert response.headers["access-control-allow-origin"] == "*"
    assert "x-requested-with" in response.headers["access-control-allow-headers"]
    assert "POST" in response.headers["access-control-allow-methods"]


def test_bare_options_request_is_empty_ok(client) -> None:
    response = client.options("/fitness-chat")
    assert response.status_code == 200
    assert response.text == ""
    assert "content-type" in response.headers["access-control-allow-headers"]


def test_chat_responses_carry_cors_headers(client, override_llm) -> None:
    override_llm(FakeScenario.PLAIN_ANSWER)
    response = _chat(client, "hi", userId=None)
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"

    rejected = client.post("/fitness-chat", json={"message": ""})
    assert rejected.status_code == 400
    assert rejected.headers["access-control-allow-origin"] == "*"


def test_long_message_is_accepted(client, override_llm) -> None:
    fake = override_llm(FakeScenario.PLAIN_ANSWER)
    long_message = "x" * 5000
    response = _chat(client, long_message, conversationHistory=[{"type": "user", "content": "y" * 6000}])
    assert response.status_code == 200
    assert response.json()["response"]
    assert fake.chat_calls[0]["messages"][-1]["content"] == long_message


def test_non_object_body_gets_fallback_envelope(client, override_llm) -> None:
    fake = override_llm(FakeScenario.PLAIN_ANSWER)
    response = client.post("/fitness-chat", json=["hello"])
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request body"
    assert "trouble connecting" in body["response"]
    assert "detail" not in body
    assert response.headers["access-control-allow-origin"] == "*"
    assert fake.chat_calls == []


def test_unparseable_body_gets_fallback_envelope(client, override_llm) -> None:
    override_llm(FakeScenario.PLAIN_ANSWER)
    response = client.post(
        "/fitness-chat", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_wrong_field_type_gets_fallback_envelope(client, override_llm) -> None:
    override_llm(FakeScenario.PLAIN_ANSWER)
    response = client.post("/fitness-chat", json={"message": "hi", "conversationHistory": "not a list"})
    assert response.status_code == 400
    assert "trouble connecting" in response.json()["response"]


def test_missing_message_is_rejected(client, override_llm) -> None:
    fake = override_llm(FakeScenario.PLAIN_ANSWER)
    response = client.post("/fitness-chat", json={"message": "   "})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Message is required"
    assert "trouble connecting" in body["response"]
    assert fake.chat_calls == []


def test_plain_answer_has_no_action(client, override_llm, user_id, seed_profile, seed_history) -> None:
    seed_profile(user_id)
    seed_history(user_id)
    fake = override_llm(FakeScenario.PLAIN_ANSWER)

    response = _chat(client, "What should I do today?", userId=user_id, avatarName="Nova")
    assert response.status_code == 200
    body = response.json()
    assert "Leg Day" in body["response"]
    assert "action" not in body
    assert body["timestamp"]

    prompt = fake.system_prompt
    assert "You are Nova" in prompt
    assert "Name: Jordan" in prompt
    assert f"=== TODAY ({utc_today().isoformat()}) ===" in prompt
    assert "INJURY RISK CONTEXT" not in prompt


def test_glass_of_water_is_logged(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_WATER)

    response = _chat(client, "I had a glass of water", userId=user_id)
    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "Logged 8oz of water. Keep it up!"
    action = body["action"]
    assert action["type"] == "log_beverage"
    assert action["beverageType"] == "water"
    assert action["amountOz"] == 8
    assert action["effectiveHydrationMl"] == 237
    assert action["writeStatus"] == "ok"

    row = db_session.query(WaterIntake).filter(WaterIntake.user_id == user_id).one()
    assert row.logged_date == utc_today()
    assert row.amount_ml == 237


def test_scan_menu_navigates(client, override_llm) -> None:
    fake = override_llm(FakeScenario.SCAN_MENU)

    response = _chat(client, "scan a menu")
    assert response.status_code == 200
    action = response.json()["action"]
    assert action == {"type": "navigate", "route": "/food-scanner?tab=menu", "pageName": "Menu Scanner"}
    offered = {tool["function"]["name"] for tool in fake.chat_calls[0]["tools"]}
    assert offered == {"navigate_to_page", "open_modal"}


def test_poor_sleep_is_upserted_for_last_night(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_SLEEP_POOR)

    response = _chat(client, "I got 6 hours of sleep, terrible night", userId=user_id)
    assert response.status_code == 200
    action = response.json()["action"]
    assert action["type"] == "log_sleep"
    assert action["durationHours"] == 6
    assert action["qualityScore"] in {1, 2}

    again = _chat(client, "I got 6 hours of sleep, terrible night", userId=user_id)
    assert again.status_code == 200
    rows = db_session.query(SleepLog).filter(SleepLog.user_id == user_id).all()
    assert len(rows) == 1
    assert rows[0].sleep_date == utc_today() - timedelta(days=1)


def test_period_start_creates_cycle_row(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.PERIOD_START)

    response = _chat(client, "My period started", userId=user_id)
    assert response.status_code == 200
    assert response.json()["action"]["eventType"] == "period_start"

    row = db_session.query(CycleTracking).filter(CycleTracking.user_id == user_id).one()
    assert row.average_cycle_length == 28
    assert row.average_period_length == 5
    assert row.last_period_start == utc_today()


def test_period_end_same_day_has_length_one(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.PERIOD_START)
    assert _chat(client, "My period started", userId=user_id).status_code == 200
    override_llm(FakeScenario.PERIOD_END)

    response = _chat(client, "My period ended", userId=user_id)
    assert response.status_code == 200
    assert response.json()["action"]["periodLength"] == 1


def test_log_food_with_request_id_is_idempotent(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_FOOD)

    for _ in range(2):
        response = _chat(client, "I had a chicken salad for lunch", userId=user_id, requestId="req-lunch-42")
        assert response.status_code == 200
        action = response.json()["action"]
        assert action["type"] == "log_food"
        assert action["nutrition"]["calories"] == 387

    assert db_session.query(FoodEntry).filter(FoodEntry.user_id == user_id).count() == 1


def test_food_logged_with_default_macros_when_lookup_fails(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.LOG_FOOD, nutrition_fails=True)

    response = _chat(client, "I had a chicken salad for lunch", userId=user_id)
    assert response.status_code == 200
    action = response.json()["action"]
    assert action["estimated"] is True
    assert action["nutrition"] == {"calories": 200, "protein": 10, "carbs": 20, "fat": 8}


def test_only_first_tool_call_is_executed(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.MULTIPLE_TOOL_CALLS)

    response = _chat(client, "I drank 16oz of water and ate a banana", userId=user_id)
    assert response.status_code == 200
    action = response.json()["action"]
    assert action["type"] == "log_beverage"
    assert db_session.query(WaterIntake).filter(WaterIntake.user_id == user_id).count() == 1
    assert db_session.query(FoodEntry).filter(FoodEntry.user_id == user_id).count() == 0


def test_malformed_tool_arguments_fall_back_to_text(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.MALFORMED_TOOL_ARGS)

    response = _chat(client, "log a water", userId=user_id)
    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "Happy to log that water for you."
    assert "action" not in body
    assert db_session.query(WaterIntake).filter(WaterIntake.user_id == user_id).count() == 0


def test_unknown_route_uses_tool_fallback(client, override_llm) -> None:
    override_llm(FakeScenario.UNKNOWN_ROUTE)

    response = _chat(client, "take me to the admin page")
    assert response.status_code == 200
    body = response.json()
    assert body["response"] == "Sorry, I couldn't complete that action. Could you rephrase?"
    assert "action" not in body


def test_logging_tool_without_user_is_refused(client, override_llm) -> None:
    override_llm(FakeScenario.LOG_WATER)

    response = _chat(client, "I had a glass of water")
    assert response.status_code == 200
    body = response.json()
    assert "action" not in body
    assert "couldn't complete" in body["response"]


def test_rate_limit_maps_to_429(client, override_llm, user_id) -> None:
    override_llm(FakeScenario.RATE_LIMITED)

    response = _chat(client, "hi", userId=user_id)
    assert response.status_code == 429
    body = response.json()
    assert "Rate limit" in body["error"]
    assert "action" not in body
    assert "response" not in body


def test_credits_depleted_maps_to_402(client, override_llm) -> None:
    override_llm(FakeScenario.CREDITS_DEPLETED)

    response = _chat(client, "hi")
    assert response.status_code == 402
    assert "credits" in response.json()["error"].lower()


def test_gateway_failure_returns_fallback(client, override_llm) -> None:
    override_llm(FakeScenario.GATEWAY_ERROR)

    response = _chat(client, "hi")
    assert response.status_code == 500
    body = response.json()
    assert "status=503" in body["error"]
    assert body["response"] == "I'm having trouble connecting right now. Please try again in a moment!"


def test_unexpected_error_returns_fallback(client, override_llm) -> None:
    override_llm(FakeScenario.TIMEOUT)

    response = _chat(client, "hi")
    assert response.status_code == 500
    assert "trouble connecting" in response.json()["response"]


def test_optional_context_sections_reach_prompt(
    client, override_llm, user_id, seed_history, seed_wellbeing
) -> None:
    seed_history(user_id)
    seed_wellbeing(user_id)
    fake = override_llm(FakeScenario.PLAIN_ANSWER)

    response = _chat(
        client,
        "Should I train hard today?",
        userId=user_id,
        includeInjuryContext=True,
        includeMoodContext=True,
        pageContext={
            "currentPage": "Workout List",
            "route": "/workout-list",
            "visibleContent": "Heavy Squat Day - 5x5",
        },
        conversationHistory=[
            {"type": "user", "content": "Hey coach"},
            {"type": "ai", "content": "Hey! Ready to train?"},
        ],
    )
    assert response.status_code == 200

    messages = fake.chat_calls[0]["messages"]
    prompt = messages[0]["content"]
    assert prompt.index("=== CURRENT SCREEN ===") < prompt.index("=== USER PROFILE ===")
    assert prompt.index("=== INJURY RISK CONTEXT ===") < prompt.index("=== MOOD & READINESS CONTEXT ===")
    assert "Heavy Squat Day - 5x5" in prompt
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[-1]["content"] == "Should I train hard today?"


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_generated_food_photo_is_served(app, client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_FOOD, image_fails=False)
    app.dependency_overrides[get_object_storage] = lambda: LocalObjectStorage()

    response = _chat(client, "I had a chicken salad for lunch", userId=user_id)
    assert response.status_code == 200
    photo_url = response.json()["action"]["photoUrl"]
    path = urlparse(photo_url).path
    assert path.startswith(f"/storage/food-images/{user_id}/")

    served = client.get(path)
    assert served.status_code == 200
    assert served.content == FAKE_PNG
    entry = db_session.query(FoodEntry).filter(FoodEntry.user_id == user_id).one()
    assert entry.photo_url == photo_url


def test_missing_storage_object_is_404(client) -> None:
    assert client.get("/storage/food-images/nobody/missing.png").status_code == 404


def test_client_time_zone_sets_sleep_night(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_SLEEP_POOR)
    zone = "Pacific/Kiritimati"

    response = _chat(client, "I got 6 hours of sleep, terrible night", userId=user_id, timeZone=zone)
    assert response.status_code == 200
    row = db_session.query(SleepLog).filter(SleepLog.user_id == user_id).one()
    assert row.sleep_date == datetime.now(ZoneInfo(zone)).date() - timedelta(days=1)


def test_client_time_zone_sets_today_section(client, override_llm, user_id, seed_profile) -> None:
    seed_profile(user_id)
    fake = override_llm(FakeScenario.PLAIN_ANSWER)
    zone = "Pacific/Pago_Pago"

    response = _chat(client, "How am I doing today?", userId=user_id, timeZone=zone)
    assert response.status_code == 200
    local_day = datetime.now(ZoneInfo(zone)).date()
    assert f"=== TODAY ({local_day.isoformat()}) ===" in fake.system_prompt


def test_unknown_time_zone_falls_back_to_utc(client, override_llm, db_session, user_id) -> None:
    override_llm(FakeScenario.LOG_SLEEP_POOR)

    response = _chat(client, "I got 6 hours of sleep, terrible night", userId=user_id, timeZone="Mars/Olympus_Mons")
    assert response.status_code == 200
    row = db_session.query(SleepLog).filter(SleepLog.user_id == user_id).one()
    assert row.sleep_date == utc_today() - timedelta(days=1)
