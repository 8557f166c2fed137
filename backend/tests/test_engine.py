import threading

import pytest

from app.captcha.engine import CaptchaEngine
from app.captcha.models import VerifyOptions
from app.core.settings import Settings
from app.storage import FailoverBackend, MemoryBackend

IP = "203.0.113.10"


def _challenged(engine, captcha_type, difficulty=0):
    token = engine.create_session(IP)["session_token"]
    result = engine.generate_challenge(token, captcha_type, difficulty)
    assert result.ok, result.error
    return token, engine.sessions.get(token).answer


def _wrong(captcha_type, answer):
    if captcha_type == "math":
        return str(answer + 1)
    if captcha_type == "slider":
        return answer + 10
    if captcha_type == "image":
        return [i for i in range(9) if i not in answer][:len(answer)]
    return list(reversed(answer))


def test_create_session_shape(engine):
    created = engine.create_session(IP)
    assert created["expires_in_seconds"] == 300
    assert len(created["session_token"]) == 64
    session = engine.sessions.get(created["session_token"])
    assert session.attempts == 0 and not session.locked
    assert session.captcha_type is None and session.answer is None
    assert session.ip_fingerprint != IP


def test_math_addition_scenario(engine):
    token, answer = _challenged(engine, "math", difficulty=0)
    challenge_session = engine.sessions.get(token)
    assert challenge_session.captcha_type == "math"

    result = engine.verify(token, "math", str(answer), 3, IP)
    assert result.verified
    assert result.token and result.timestamp
    assert engine.sessions.get(token) is None

    again = engine.verify(token, "math", str(answer), 3, IP)
    assert not again.verified
    assert again.error == "Invalid or expired session"


def test_math_answer_ignores_case_and_whitespace(engine):
    token, answer = _challenged(engine, "math")
    assert engine.verify(token, "math", f"  {answer} ", 2, IP).verified


def test_challenge_never_contains_answer(engine):
    token = engine.create_session(IP)["session_token"]
    result = engine.generate_challenge(token, "slider")
    assert "answer" not in result.to_dict()
    assert set(result.challenge) == {"min", "max", "instruction"}


def test_slider_tolerance(engine):
    token, target = _challenged(engine, "slider")
    assert not engine.verify(token, "slider", target + 10, 3, IP).verified
    assert engine.verify(token, "slider", target + 5, 3, IP).verified

    token, target = _challenged(engine, "slider")
    assert engine.verify(token, "slider", target, 3, IP).verified


def test_slider_tolerance_option(engine):
    token, target = _challenged(engine, "slider")
    result = engine.verify(token, "slider", target + 4, 3, IP, VerifyOptions(slider_tolerance=1))
    assert not result.verified
    assert result.error == "Incorrect answer"


def test_image_ignores_order(engine):
    token, answer = _challenged(engine, "image")
    assert engine.verify(token, "image", list(reversed(answer)), 3, IP).verified


def test_image_compares_index_sets(engine):
    token, answer = _challenged(engine, "image")
    assert engine.verify(token, "image", answer + answer[:1], 3, IP).verified


def test_math_accepts_integral_float(engine):
    token, answer = _challenged(engine, "math")
    assert engine.verify(token, "math", float(answer), 3, IP).verified


def test_image_rejects_missing_cell(engine):
    token, answer = _challenged(engine, "image")
    result = engine.verify(token, "image", answer[:-1], 3, IP)
    assert not result.verified and result.attempts == 1


def test_pattern_requires_exact_order(engine):
    token, answer = _challenged(engine, "pattern")
    result = engine.verify(token, "pattern", list(reversed(answer)), 3, IP)
    assert not result.verified
    assert result.error == "Incorrect answer"
    assert engine.verify(token, "pattern", answer, 3, IP).verified


def test_math_too_fast_is_failed_attempt_even_if_correct(engine):
    token, answer = _challenged(engine, "math")
    result = engine.verify(token, "math", str(answer), 0.5, IP)
    assert not result.verified
    assert result.error == "Suspicious activity detected"
    assert result.attempts == 1 and result.max_attempts == 3
    assert engine.sessions.get(token).attempts == 1
    assert engine.verify(token, "math", str(answer), 1, IP).verified


@pytest.mark.parametrize("captcha_type", ["image", "slider", "pattern"])
def test_other_kinds_need_two_seconds(engine, captcha_type):
    token, answer = _challenged(engine, captcha_type)
    result = engine.verify(token, captcha_type, answer, 1.9, IP)
    assert not result.verified
    assert result.error == "Suspicious activity detected"
    assert engine.sessions.get(token).attempts == 1


@pytest.mark.parametrize("captcha_type", ["math", "image", "slider", "pattern"])
def test_three_failures_lock_the_session(engine, clock, captcha_type):
    token, answer = _challenged(engine, captcha_type)
    wrong = _wrong(captcha_type, answer)

    first = engine.verify(token, captcha_type, wrong, 3, IP)
    assert first.remaining_attempts == 2 and first.lock_remaining is None
    engine.verify(token, captcha_type, wrong, 3, IP)
    third = engine.verify(token, captcha_type, wrong, 3, IP)
    assert third.attempts == 3 and third.remaining_attempts == 0
    assert third.lock_remaining == 60

    session = engine.sessions.get(token)
    assert session.locked
    assert session.lock_until == clock.now + 60

    clock.advance(10)
    fourth = engine.verify(token, captcha_type, answer, 3, IP)
    assert not fourth.verified
    assert fourth.error_kind == "locked"
    assert fourth.lock_remaining == 50
    assert engine.sessions.get(token).attempts == 3


def test_locked_session_ignores_answer_shape(engine):
    token, answer = _challenged(engine, "image")
    wrong = _wrong("image", answer)
    for _ in range(3):
        engine.verify(token, "image", wrong, 3, IP)

    result = engine.verify(token, "image", "3,4", 3, IP)
    assert result.error_kind == "locked"
    assert result.lock_remaining == 60


def test_lock_clears_after_lockout(engine, clock):
    token, answer = _challenged(engine, "math")
    for _ in range(3):
        engine.verify(token, "math", "wrong", 3, IP)
    clock.advance(61)

    result = engine.verify(token, "math", "still wrong", 3, IP)
    assert not result.verified
    assert result.error == "Incorrect answer"
    assert result.attempts == 1
    session = engine.sessions.get(token)
    assert not session.locked and session.lock_until is None


def test_type_mismatch_does_not_count(engine):
    token, answer = _challenged(engine, "math")
    result = engine.verify(token, "slider", 50, 3, IP)
    assert not result.verified
    assert result.error == "Captcha type mismatch"
    assert result.error_kind == "protocol_error"
    assert engine.sessions.get(token).attempts == 0


def test_malformed_requests_are_protocol_errors(engine):
    token, answer = _challenged(engine, "image")
    assert engine.verify(token, "image", "3,4", 3, IP).error == "Malformed answer"
    assert engine.verify(token, "audio", [1], 3, IP).error == "Invalid captcha type"
    assert engine.verify("nope", "image", [1], 3, IP).error == "Invalid session token"
    assert engine.verify(token, "image", [1], -1, IP).error == "Invalid time taken"
    assert engine.verify(token, "image", [1], 301, IP).error == "Invalid time taken"
    assert engine.sessions.get(token).attempts == 0


def test_verify_without_challenge(engine):
    token = engine.create_session(IP)["session_token"]
    result = engine.verify(token, "math", "4", 3, IP)
    assert result.error_kind == "protocol_error"
    assert engine.sessions.get(token).attempts == 0


def test_session_expires_after_max_age(engine, clock):
    token, answer = _challenged(engine, "math")
    clock.advance(301)
    result = engine.verify(token, "math", str(answer), 3, IP)
    assert not result.verified
    assert result.error == "Invalid or expired session"


def test_updates_do_not_extend_max_age(engine, clock, memory):
    token, answer = _challenged(engine, "math")
    clock.advance(200)
    engine.verify(token, "math", "wrong", 3, IP)
    clock.advance(150)
    # Record TTL was refreshed by the update, but the age check still applies.
    assert memory.get(f"captcha:session:{token}") is not None
    result = engine.verify(token, "math", str(answer), 3, IP)
    assert result.error == "Session expired"
    assert engine.sessions.get(token) is None


def test_rate_limit_rejects_without_touching_session(engine):
    token, answer = _challenged(engine, "math")
    for _ in range(50):
        engine.rate_limiter.check(IP)
    result = engine.verify(token, "math", str(answer), 3, IP)
    assert not result.verified
    assert result.error == "Rate limit exceeded"
    assert result.retry_after == 900
    assert engine.sessions.get(token).attempts == 0


def test_protocol_errors_still_consume_rate_limit(engine):
    engine.verify("bad", "audio", None, 3, IP)
    assert engine.rate_limiter.check(IP).remaining == 48


def test_second_challenge_type_is_rejected(engine):
    token, _ = _challenged(engine, "math")
    result = engine.generate_challenge(token, "pattern")
    assert not result.ok
    assert result.error_kind == "protocol_error"
    assert engine.sessions.get(token).captcha_type == "math"
    assert engine.generate_challenge(token, "math", 2).ok


def test_challenge_for_unknown_session(engine):
    result = engine.generate_challenge("f" * 64, "math")
    assert not result.ok
    assert result.error == "Invalid or expired session"
    assert engine.generate_challenge("f" * 64, "math", 5).error == "Invalid difficulty"


def test_duplicate_success_only_mints_once(engine):
    token, answer = _challenged(engine, "pattern")
    assert engine.sessions.delete(token) is True
    assert engine.sessions.delete(token) is False
    assert engine.sessions.update(token, attempts=1) is None
    assert engine.sessions.get(token) is None


class GatedMemory(MemoryBackend):
    """Holds each thread at its first session read until every thread has read."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.barrier = None
        self._seen = threading.local()

    def get(self, key):
        value = super().get(key)
        if self.barrier is not None and ":session:" in key and not getattr(self._seen, "done", False):
            self._seen.done = True
            self.barrier.wait()
        return value


@pytest.fixture
def gated(clock):
    memory = GatedMemory(clock)
    engine = CaptchaEngine(FailoverBackend(None, memory, clock=clock), settings=Settings(), clock=clock)
    return memory, engine


def _concurrently(memory, call, count=2):
    memory.barrier = threading.Barrier(count, timeout=5)
    results = [None] * count

    def run(index):
        results[index] = call()

    threads = [threading.Thread(target=run, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    memory.barrier = None
    return results


def test_concurrent_wrong_answers_keep_the_lock(gated):
    memory, engine = gated
    token, answer = _challenged(engine, "math")
    wrong = str(answer + 1)
    assert engine.verify(token, "math", wrong, 3, IP).attempts == 1

    results = _concurrently(memory, lambda: engine.verify(token, "math", wrong, 3, IP))
    assert all(r is not None and r.error == "Incorrect answer" for r in results)
    assert sorted(r.attempts for r in results) == [2, 3]
    assert [r.lock_remaining for r in results].count(60) == 1

    session = engine.sessions.get(token)
    assert session.locked
    assert session.attempts == 3

    blocked = engine.verify(token, "math", str(answer), 3, IP)
    assert not blocked.verified
    assert blocked.error_kind == "locked"


def test_concurrent_correct_answers_mint_once(gated):
    memory, engine = gated
    token, answer = _challenged(engine, "pattern")

    results = _concurrently(memory, lambda: engine.verify(token, "pattern", answer, 3, IP))
    assert all(r is not None for r in results)
    assert [r.verified for r in results].count(True) == 1
    loser = next(r for r in results if not r.verified)
    assert loser.error == "Invalid or expired session"
    assert loser.token is None


def test_validate_token_round_trip(engine, clock):
    token, answer = _challenged(engine, "math")
    minted = engine.verify(token, "math", str(answer), 3, IP).token
    assert engine.validate_token(minted, IP).valid
    clock.advance(3601)
    assert engine.validate_token(minted, IP).error == "Token expired"


def test_stats(engine):
    engine.create_session(IP)
    engine.create_session(IP)
    engine.rate_limiter.check("a")
    stats = engine.stats()
    assert stats["active_sessions"] == 2
    assert stats["rate_limit_entries"] == 1
    assert stats["storage_backend"] == "memory"
    assert stats["config"]["max_attempts"] == 3
    assert stats["config"]["rate_limit_max"] == 50
