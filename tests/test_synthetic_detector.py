"""Tests for the synthetic-image detectors."""

import asyncio
from types import SimpleNamespace
from urllib.parse import parse_qs

import httpx

from analyzers.synthetic_detector import (
    HuggingFaceSyntheticDetector,
    SightengineDetector,
    SyntheticImageDetector,
)


def sightengine(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, SightengineDetector("user", "secret", client, timeout_s=1.0)


def score_with(handler, url="https://cdn.example.com/evidence.jpg"):
    async def run():
        client, detector = sightengine(handler)
        async with client:
            return await detector.score(url)

    return asyncio.run(run())


def test_sightengine_current_shape():
    seen = {}

    def handler(request):
        seen.update(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"status": "success", "type": {"ai_generated": 0.12}})

    assert score_with(handler) == 12
    assert seen["models"] == ["genai"]
    assert seen["url"] == ["https://cdn.example.com/evidence.jpg"]
    assert seen["api_user"] == ["user"]


def test_sightengine_legacy_shape():
    def handler(request):
        return httpx.Response(200, json={"ai_generated": {"score": 0.876}})

    assert score_with(handler) == 88


def test_sightengine_http_error_is_zero():
    def handler(request):
        return httpx.Response(500, text="upstream error")

    assert score_with(handler) == 0


def test_sightengine_missing_field_is_zero():
    def handler(request):
        return httpx.Response(200, json={"status": "failure", "error": {"message": "bad url"}})

    assert score_with(handler) == 0


def test_sightengine_network_error_is_zero():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    assert score_with(handler) == 0


def test_empty_url_makes_no_call():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"type": {"ai_generated": 0.9}})

    assert score_with(handler, url="") == 0
    assert calls == []


class DummyDetector(SyntheticImageDetector):
    def __init__(self, value):
        self.value = value

    async def _classify(self, image_url):
        return self.value


def test_non_numeric_probability_is_zero():
    assert asyncio.run(DummyDetector("0.9").score("u")) == 0
    assert asyncio.run(DummyDetector(True).score("u")) == 0
    assert asyncio.run(DummyDetector(None).score("u")) == 0


def test_probability_is_clamped():
    assert asyncio.run(DummyDetector(1.7).score("u")) == 100
    assert asyncio.run(DummyDetector(-0.2).score("u")) == 0


class FakeInferenceClient:
    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    async def image_classification(self, image, model=None):
        self.calls.append((image, model))
        return self.outputs


def test_huggingface_detector_matches_labels():
    client = FakeInferenceClient([
        SimpleNamespace(label="human", score=0.35),
        SimpleNamespace(label="Artificial", score=0.65),
    ])
    detector = HuggingFaceSyntheticDetector("org/ai-image-detector", client=client)
    assert asyncio.run(detector.score("https://cdn.example.com/a.jpg")) == 65
    assert client.calls == [("https://cdn.example.com/a.jpg", "org/ai-image-detector")]


def test_huggingface_detector_unknown_labels_is_zero():
    client = FakeInferenceClient([SimpleNamespace(label="cat", score=0.99)])
    detector = HuggingFaceSyntheticDetector("org/model", client=client)
    assert asyncio.run(detector.score("https://cdn.example.com/a.jpg")) == 0


def test_infinite_probability_is_zero():
    assert asyncio.run(DummyDetector(float("inf")).score("u")) == 0
    assert asyncio.run(DummyDetector(float("nan")).score("u")) == 0


class SlowInferenceClient(FakeInferenceClient):
    async def image_classification(self, image, model=None):
        await asyncio.sleep(1.0)
        return self.outputs

    async def close(self):
        self.closed = True


def test_huggingface_detector_bounds_injected_client():
    client = SlowInferenceClient([SimpleNamespace(label="artificial", score=0.9)])
    detector = HuggingFaceSyntheticDetector("org/model", client=client, timeout_s=0.05)
    assert asyncio.run(detector.score("https://cdn.example.com/a.jpg")) == 0


def test_injected_client_is_not_closed():
    client = SlowInferenceClient([])
    client.closed = False
    detector = HuggingFaceSyntheticDetector("org/model", client=client)
    asyncio.run(detector.aclose())
    assert client.closed is False
