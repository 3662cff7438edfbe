import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from aharadar.libs.llm_router.types import LlmCallResult, ModelRef

BASE_TIME = 1_700_000_000.0


class FakeClock:
    def __init__(self, start: float = BASE_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def hincrby(self, key, field, amount):
        self._ops.append(("hincrby", key, field, amount))
        return self

    def expire(self, key, seconds, nx=False):
        self._ops.append(("expire", key, seconds, nx))
        return self

    def hgetall(self, key):
        self._ops.append(("hgetall", key))
        return self

    async def execute(self):
        ops, self._ops = self._ops, []
        if self._redis.gates:
            await self._redis.gates.pop(0).wait()
        if self._redis.fail:
            raise RedisConnectionError("redis unavailable")
        results = []
        for op in ops:
            if op[0] == "hincrby":
                _, key, field, amount = op
                bucket = self._redis.hashes.setdefault(key, {})
                bucket[field] = bucket.get(field, 0) + amount
                results.append(bucket[field])
            elif op[0] == "expire":
                _, key, seconds, nx = op
                if not (nx and key in self._redis.ttls):
                    self._redis.ttls[key] = seconds
                results.append(True)
            else:
                results.append(self._redis.snapshot(op[1]))
        return results


class FakeRedis:
    """In-memory stand-in for the few redis.asyncio calls the usage store makes."""

    def __init__(self):
        self.hashes = {}
        self.ttls = {}
        self.fail = False
        self.closed = False
        self.hgetall_calls = 0
        # One asyncio.Event per upcoming pipeline execute; each write waits on its own.
        self.gates = []

    def snapshot(self, key):
        return {field: str(value) for field, value in self.hashes.get(key, {}).items()}

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def hgetall(self, key):
        self.hgetall_calls += 1
        if self.fail:
            raise RedisConnectionError("redis unavailable")
        return self.snapshot(key)

    async def aclose(self):
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class ScriptedRouter:
    """Router double that replays canned outputs and records every request.

    Script entries are raw output text, a dict (serialised to JSON), a ready
    ``LlmCallResult``, or an exception to raise from ``call``.
    """

    def __init__(self, script, *, provider="openai", model="gpt-test", env=None):
        self.env = dict(env or {})
        self.script = list(script)
        self.provider = provider
        self.model = model
        self.chosen = []
        self.requests = []

    def choose_model(self, task, tier):
        self.chosen.append((task, tier))
        return ModelRef(provider=self.provider, model=self.model, endpoint="https://llm.test/v1/responses")

    async def call(self, task, ref, request):
        self.requests.append((task, ref, request))
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, LlmCallResult):
            return item
        text = item if isinstance(item, str) else json.dumps(item)
        return LlmCallResult(
            output_text=text,
            raw_response=None,
            input_tokens=100,
            output_tokens=50,
            endpoint=ref.endpoint,
        )

    def user_payload(self, index=0):
        user = self.requests[index][2].user
        assert user.startswith("Input JSON:\n")
        return json.loads(user.split("\n", 1)[1])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def scripted_router():
    return ScriptedRouter
