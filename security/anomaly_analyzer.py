"""
Anomaly analysis over recent security events.

The analyzer hands a bounded window of events to a pluggable classifier. When
the classifier is unavailable, slow or returns garbage, the deterministic
rule-based assessment is used instead; analysis never raises to its caller.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from models.security import AnalysisSource, AnomalyResult, ClassifierVerdict, ThreatLevel
from security.events import SecurityEvent, SecuritySeverity
from utils.exceptions import ClassifierUnavailableError

logger = logging.getLogger(__name__)

FALLBACK_RECOMMENDATIONS = [
    "Review blocked client keys and confirm they are not legitimate traffic",
    "Inspect recent high-severity events for coordinated sources",
    "Verify rate limit thresholds against current traffic levels",
    "Rotate credentials if unauthorized access attempts persist",
]

# High-severity events above this count raise the threat level to medium
HIGH_SEVERITY_THRESHOLD = 5

AlertCallback = Callable[[AnomalyResult], Union[None, Awaitable[None]]]


def fallback_threat_level(events: Sequence[SecurityEvent]) -> ThreatLevel:
    """
    Deterministic threat level used by the dashboard and the fallback classifier.

    Any critical event gives ``high``; more than five high events give
    ``medium``; otherwise ``low``, including for an empty window.
    """
    if any(event.severity == SecuritySeverity.CRITICAL for event in events):
        return ThreatLevel.HIGH
    high_count = sum(1 for event in events if event.severity == SecuritySeverity.HIGH)
    if high_count > HIGH_SEVERITY_THRESHOLD:
        return ThreatLevel.MEDIUM
    return ThreatLevel.LOW


def assess_threat_level(events: Sequence[SecurityEvent]) -> ThreatLevel:
    """Analyzer threat level: ``none`` for an empty window, the fallback rule otherwise."""
    if not events:
        return ThreatLevel.NONE
    return fallback_threat_level(events)


def should_alert_for(events: Sequence[SecurityEvent]) -> bool:
    return any(
        event.severity in (SecuritySeverity.CRITICAL, SecuritySeverity.HIGH)
        for event in events
    )


class AnomalyClassifier(ABC):
    """Turns a window of security events into a threat assessment."""

    @abstractmethod
    async def classify(self, events: Sequence[SecurityEvent]) -> AnomalyResult:
        ...

    async def aclose(self) -> None:
        return None


class RuleBasedClassifier(AnomalyClassifier):
    """Deterministic classifier; also the analyzer's fallback."""

    source = AnalysisSource.FALLBACK

    async def classify(self, events: Sequence[SecurityEvent]) -> AnomalyResult:
        return self.assess(events)

    def assess(self, events: Sequence[SecurityEvent]) -> AnomalyResult:
        level = assess_threat_level(events)
        critical = sum(1 for e in events if e.severity == SecuritySeverity.CRITICAL)
        high = sum(1 for e in events if e.severity == SecuritySeverity.HIGH)
        return AnomalyResult(
            threat_level=level,
            analysis=(
                f"Rule-based assessment of {len(events)} events: "
                f"{critical} critical, {high} high severity."
            ),
            recommendations=list(FALLBACK_RECOMMENDATIONS),
            should_alert=should_alert_for(events),
            source=self.source,
            events_analyzed=len(events),
        )


class HTTPAnomalyClassifier(AnomalyClassifier):
    """
    Classifier backed by an OpenAI-compatible chat completions endpoint.

    The model is asked for a JSON object matching ClassifierVerdict; anything
    else is reported as ClassifierUnavailableError.
    """

    SYSTEM_PROMPT = (
        "You are a security analyst. Given recent security events from a web "
        "application, assess the overall threat level and recommend actions. "
        "Respond only with JSON matching the provided schema."
    )

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        self._headers = headers

    def _build_request(self, events: Sequence[SecurityEvent]) -> dict:
        summaries = [event.summary() for event in events]
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps({"events": summaries})},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "anomaly_assessment",
                    "schema": ClassifierVerdict.model_json_schema(),
                },
            },
        }

    async def classify(self, events: Sequence[SecurityEvent]) -> AnomalyResult:
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=self._build_request(events),
                headers=self._headers,
            )
            response.raise_for_status()
            content = response.json()["choices"][0]["message"]["content"]
            verdict = ClassifierVerdict.model_validate_json(content)
        except httpx.HTTPError as e:
            raise ClassifierUnavailableError(f"Classifier request failed: {type(e).__name__}")
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
            raise ClassifierUnavailableError(f"Classifier returned an unusable response: {type(e).__name__}")

        return AnomalyResult(
            threat_level=verdict.threat_level,
            analysis=verdict.analysis,
            recommendations=verdict.recommendations,
            should_alert=verdict.should_alert,
            source=AnalysisSource.CLASSIFIER,
            events_analyzed=len(events),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class AnomalyAnalyzer:
    """Runs a classifier over the most recent events with a timeout and fallback."""

    def __init__(
        self,
        classifier: Optional[AnomalyClassifier] = None,
        window: int = 50,
        timeout: float = 10.0,
        on_alert: Optional[AlertCallback] = None,
    ):
        self.fallback = RuleBasedClassifier()
        self.classifier = classifier or self.fallback
        self.window = window
        self.timeout = timeout
        self.on_alert = on_alert

    async def analyze(self, events: Sequence[SecurityEvent]) -> AnomalyResult:
        if not events:
            return AnomalyResult(
                threat_level=ThreatLevel.NONE,
                analysis="No security events to analyze.",
                recommendations=[],
                should_alert=False,
                source=AnalysisSource.EMPTY,
                events_analyzed=0,
            )

        window: List[SecurityEvent] = list(events)[-self.window:]

        try:
            result = await asyncio.wait_for(self.classifier.classify(window), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ [ANOMALY] Classifier timed out after {self.timeout}s; using rule-based fallback")
            result = self.fallback.assess(window)
        except Exception as e:
            logger.warning(f"⚠️ [ANOMALY] Classifier unavailable ({e}); using rule-based fallback")
            result = self.fallback.assess(window)

        if result.should_alert:
            logger.warning(
                f"🚨 [ANOMALY] Threat level {result.threat_level.value} over {len(window)} events",
                extra={'threat_level': result.threat_level.value},
            )
            await self._notify(result)

        return result

    async def _notify(self, result: AnomalyResult) -> None:
        if self.on_alert is None:
            return
        try:
            outcome = self.on_alert(result)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as e:
            logger.error(f"❌ [ANOMALY] Alert callback failed: {e}")

    async def aclose(self) -> None:
        await self.classifier.aclose()
