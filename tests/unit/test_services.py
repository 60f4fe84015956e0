# tests/unit/test_services.py

import hashlib
import hmac
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from datetime import timedelta
from fastapi import HTTPException
from jose import jwt
from unittest.mock import AsyncMock, MagicMock

from chatbotflex.config import strings
from chatbotflex.config.settings import settings
from chatbotflex.models.flow import ConversationContext
from chatbotflex.services.cache_service import CacheService
from chatbotflex.services.flow_service import FlowService
from chatbotflex.services.instagram_service import InstagramService
from chatbotflex.services.jwt_service import JWTService
from chatbotflex.services.security_service import RedisLoginAttemptTracker, SecurityService
from chatbotflex.services.whatsapp_service import WhatsAppService
from chatbotflex.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from chatbotflex.utils.tasks import close_inactive_conversations, retry_waiting_queue, schedule_jobs

GRAPH_URL = "https://graph.test/v18.0"


def graph_response(status_code=200, body=None):
    response = MagicMock(status_code=status_code)
    response.json.return_value = body or {}
    return response


# --- Security ---

class TestSecurityService:

    def test_valid_webhook_signature(self):
        body = b'{"entry": []}'
        signature = "sha256=" + hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert SecurityService.verify_webhook_signature(body, signature, "secret") is True

    @pytest.mark.parametrize("signature, secret", [
        ("sha256=deadbeef", "secret"),
        ("", "secret"),
        ("md5=abc", "secret"),
        ("sha256=abc", None),
    ])
    def test_invalid_webhook_signature(self, signature, secret):
        assert SecurityService.verify_webhook_signature(b"{}", signature, secret) is False

    def test_password_hash_round_trip(self):
        hashed = SecurityService.hash_password("correct horse battery")
        assert SecurityService.verify_password("correct horse battery", hashed) is True
        assert SecurityService.verify_password("wrong password!!", hashed) is False

    def test_malformed_hash_never_verifies(self):
        assert SecurityService.verify_password("anything at all", "not-a-bcrypt-hash") is False
        assert SecurityService.verify_password("anything at all", None) is False


@pytest.mark.asyncio
async def test_login_tracker_locks_out_after_max_attempts():
    redis_client = AsyncMock()
    tracker = RedisLoginAttemptTracker(redis_client, max_attempts=3)

    redis_client.get.return_value = b"3"
    assert await tracker.is_locked_out("1.2.3.4") is True
    redis_client.get.return_value = None
    assert await tracker.is_locked_out("1.2.3.4") is False

    redis_client.incr.return_value = 1
    await tracker.record_attempt("1.2.3.4")
    redis_client.expire.assert_awaited_once_with("login_attempts:1.2.3.4", 900)


@pytest.mark.asyncio
async def test_login_tracker_tolerates_redis_errors():
    redis_client = AsyncMock()
    redis_client.get.side_effect = ConnectionError("redis down")
    redis_client.incr.side_effect = ConnectionError("redis down")
    tracker = RedisLoginAttemptTracker(redis_client)

    assert await tracker.is_locked_out("1.2.3.4") is False
    await tracker.record_attempt("1.2.3.4")


# --- JWT ---

class TestJWTService:

    def setup_method(self):
        self.service = JWTService("k" * 32, expire_hours=2)

    def test_access_token_round_trip(self):
        claims = self.service.verify_access_token(self.service.create_access_token("admin"))
        assert claims["sub"] == "admin"
        assert claims["type"] == "access"
        assert self.service.expires_in == 7200

    def test_expired_token_is_rejected(self):
        token = self.service.create_access_token("admin", expires_delta=timedelta(seconds=-1))
        with pytest.raises(HTTPException) as error:
            self.service.verify_access_token(token)
        assert error.value.status_code == 401

    def test_token_signed_with_other_key_is_rejected(self):
        token = JWTService("x" * 32).create_access_token("admin")
        with pytest.raises(HTTPException) as error:
            self.service.verify_access_token(token)
        assert error.value.status_code == 401

    def test_non_access_token_is_forbidden(self):
        token = jwt.encode({"sub": "admin", "type": "refresh"}, "k" * 32, algorithm="HS256")
        with pytest.raises(HTTPException) as error:
            self.service.verify_access_token(token)
        assert error.value.status_code == 403


# --- Cache ---

@pytest.mark.asyncio
async def test_claim_message_detects_redelivery():
    cache = CacheService("redis://localhost:6379/15")
    cache.redis = AsyncMock()

    cache.redis.set.return_value = True
    assert await cache.claim_message("whatsapp", "wamid.1", ttl=300) is True
    cache.redis.set.assert_awaited_with("processed_message:whatsapp:wamid.1", "1", nx=True, ex=300)

    cache.redis.set.return_value = None
    assert await cache.claim_message("whatsapp", "wamid.1", ttl=300) is False


@pytest.mark.asyncio
async def test_claim_message_treats_messages_as_new_when_redis_fails():
    cache = CacheService("redis://localhost:6379/15")
    cache.redis = AsyncMock()
    cache.redis.set.side_effect = ConnectionError("redis down")

    assert await cache.claim_message("instagram", "mid.1") is True


# --- Graph API senders ---

@pytest.mark.asyncio
async def test_whatsapp_send_message(mocker):
    service = WhatsAppService("token", "1234567890", base_url=GRAPH_URL)
    api_call = mocker.patch.object(
        service, "resilient_api_call", new_callable=AsyncMock,
        return_value=graph_response(body={"messages": [{"id": "wamid.out"}]}),
    )

    message_id = await service.send_message("+55 (11) 99999-9999", "Olá!")

    assert message_id == "wamid.out"
    args, kwargs = api_call.call_args
    assert args[1] == f"{GRAPH_URL}/1234567890/messages"
    assert kwargs["json"]["to"] == "5511999999999"
    assert kwargs["json"]["text"] == {"body": "Olá!"}
    assert kwargs["headers"]["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_whatsapp_send_truncates_long_text(mocker):
    service = WhatsAppService("token", "1234567890", base_url=GRAPH_URL)
    api_call = mocker.patch.object(service, "resilient_api_call", new_callable=AsyncMock, return_value=graph_response())

    await service.send_message("5511999999999", "x" * 5000)

    assert len(api_call.call_args.kwargs["json"]["text"]["body"]) == 4096


@pytest.mark.asyncio
async def test_whatsapp_send_failure_returns_none(mocker):
    service = WhatsAppService("token", "1234567890", base_url=GRAPH_URL)
    mocker.patch.object(
        service, "resilient_api_call", new_callable=AsyncMock,
        return_value=graph_response(400, {"error": {"message": "Invalid parameter"}}),
    )
    assert await service.send_message("5511999999999", "oi") is None

    mocker.patch.object(service, "resilient_api_call", new_callable=AsyncMock, side_effect=CircuitOpenError("whatsapp"))
    assert await service.send_message("5511999999999", "oi") is None


@pytest.mark.asyncio
async def test_unconfigured_sender_does_not_call_the_api(mocker):
    service = WhatsAppService(None, "1234567890", base_url=GRAPH_URL)
    api_call = mocker.patch.object(service, "resilient_api_call", new_callable=AsyncMock)

    assert await service.send_message("5511999999999", "oi") is None
    api_call.assert_not_awaited()


@pytest.mark.asyncio
async def test_instagram_send_message(mocker):
    service = InstagramService("token", "PAGE", base_url=GRAPH_URL)
    api_call = mocker.patch.object(
        service, "resilient_api_call", new_callable=AsyncMock,
        return_value=graph_response(body={"recipient_id": "1789", "message_id": "mid.out"}),
    )

    assert await service.send_message("1789", "y" * 1500) == "mid.out"
    args, kwargs = api_call.call_args
    assert args[1] == f"{GRAPH_URL}/PAGE/messages"
    assert kwargs["json"]["recipient"] == {"id": "1789"}
    assert kwargs["json"]["messaging_type"] == "RESPONSE"
    assert len(kwargs["json"]["message"]["text"]) == 1000


def test_instagram_defaults_to_me_page():
    assert InstagramService("token", None, base_url=GRAPH_URL).page_id == "me"


# --- Circuit breaker ---

@pytest.mark.asyncio
async def test_circuit_breaker_opens_and_recovers():
    breaker = CircuitBreaker("test", failure_threshold=2, timeout=60, success_threshold=1)
    failing = AsyncMock(side_effect=RuntimeError("boom"))

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(failing)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError):
        await breaker.call(AsyncMock())

    breaker.last_failure_time -= 61
    assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_reopens_circuit():
    breaker = CircuitBreaker("test", failure_threshold=1, timeout=60)
    with pytest.raises(RuntimeError):
        await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))

    breaker.last_failure_time -= 61
    with pytest.raises(RuntimeError):
        await breaker.call(AsyncMock(side_effect=RuntimeError("still down")))
    assert breaker.state == CircuitState.OPEN


# --- Flow service ---

@pytest.mark.asyncio
async def test_flow_service_apologizes_when_the_store_fails():
    store = AsyncMock()
    store.load_active_flow_graph.side_effect = RuntimeError("mongo down")
    context = ConversationContext(stage="m1")

    result = await FlowService(store, "Geral").process_message("oi", context)

    assert result.message == strings.DEFAULT_APOLOGY
    assert result.context == context


@pytest.mark.asyncio
async def test_flow_service_without_active_flow_reports_configuration_error():
    store = AsyncMock()
    store.load_active_flow_graph.return_value = None

    result = await FlowService(store, "Geral").process_message("oi", ConversationContext())

    assert result.message == strings.CONFIG_ERROR


# --- Scheduled jobs ---

@pytest.mark.asyncio
async def test_waiting_queue_job_survives_errors(mocker):
    process = mocker.patch(
        "chatbotflex.utils.tasks.queue_service.process_waiting_queue",
        new_callable=AsyncMock,
        side_effect=RuntimeError("mongo down"),
    )

    await retry_waiting_queue()
    await retry_waiting_queue()

    assert process.await_count == 2


@pytest.mark.asyncio
async def test_auto_close_job_survives_errors(mocker):
    run = mocker.patch(
        "chatbotflex.utils.tasks.auto_close_service.run",
        new_callable=AsyncMock,
        side_effect=RuntimeError("mongo down"),
    )

    await close_inactive_conversations()

    run.assert_awaited_once()


def test_schedule_jobs_registers_interval_jobs(mocker):
    mocker.patch.object(settings, "auto_close_enabled", True)
    scheduler = AsyncIOScheduler()

    schedule_jobs(scheduler)

    waiting_job = scheduler.get_job("waiting_queue_job")
    assert waiting_job.func is retry_waiting_queue
    assert waiting_job.trigger.interval == timedelta(seconds=settings.waiting_queue_interval_seconds)
    auto_close_job = scheduler.get_job("auto_close_job")
    assert auto_close_job.func is close_inactive_conversations
    assert auto_close_job.trigger.interval == timedelta(seconds=settings.auto_close_interval_seconds)


def test_auto_close_job_not_scheduled_when_disabled(mocker):
    mocker.patch.object(settings, "auto_close_enabled", False)
    scheduler = AsyncIOScheduler()

    schedule_jobs(scheduler)

    assert scheduler.get_job("waiting_queue_job") is not None
    assert scheduler.get_job("auto_close_job") is None
