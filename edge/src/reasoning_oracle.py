"""
Client for the external natural-language reasoning service.

Requests are queued and sent by a single worker thread. Callers get a
future and may wait on it with a timeout; any transport, timeout or parse
failure resolves to an OracleResponse with success=False.
"""

import queue
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional

import requests
from loguru import logger

from shared.interfaces.reasoning import IReasoningOracle
from shared.models import (
    ContextItem, FrameAnalysisResult, GlobalConfig, OracleRequest, OracleResponse,
    RequestPriority, RequestType,
)
from shared.time_utils import now_us


API_VERSION = "2023-06-01"

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI security analyst integrated with a surveillance system. "
    "Analyze provided information and respond with actionable security insights."
)

SYSTEM_PROMPTS = {
    RequestType.ANOMALY_ANALYSIS: (
        "You are an AI security analyst specializing in anomaly detection. "
        "Analyze security camera anomalies and provide clear assessment of threats."
    ),
    RequestType.SITUATION_ASSESSMENT: (
        "You are an AI security situation analyst. "
        "Assess overall security situations from camera feeds and provide comprehensive situation awareness."
    ),
    RequestType.RESPONSE_PLANNING: (
        "You are an AI security response planner. "
        "Create strategic response plans for security situations that balance caution with appropriate action."
    ),
    RequestType.PREDICTIVE_ANALYSIS: (
        "You are an AI security predictive analyst. "
        "Predict future behaviors and potential security implications based on observed patterns."
    ),
    RequestType.CROSS_CAMERA_ANALYSIS: (
        "You are an AI security correlation specialist. "
        "Analyze information across multiple cameras to identify connections and coordinated activities."
    ),
}


class OracleError(Exception):
    """Raised inside the worker when the service call fails."""


class ReasoningOracle(IReasoningOracle):
    """
    Queue-backed client for the reasoning service Messages API.
    """

    def __init__(self, config: GlobalConfig, clock: Callable[[], int] = now_us,
                 session: Optional[requests.Session] = None):
        """
        Initialize reasoning oracle.

        Args:
            config: Global settings carrying API key, model, endpoint and timeout
            clock: Microsecond clock used to stamp requests and responses
            session: Optional requests session, a new one is created if omitted
        """
        self.api_key = config.llm_api_key
        self.model_name = config.llm_model_name
        self.api_endpoint = config.llm_api_endpoint
        self.max_tokens = config.llm_max_tokens
        self.temperature = config.llm_temperature
        self.timeout = config.llm_request_timeout_secs
        self.clock = clock
        self.session = session or requests.Session()

        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def configure(self, config: GlobalConfig) -> None:
        self.api_key = config.llm_api_key
        self.model_name = config.llm_model_name
        self.api_endpoint = config.llm_api_endpoint
        self.max_tokens = config.llm_max_tokens
        self.temperature = config.llm_temperature
        self.timeout = config.llm_request_timeout_secs

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(target=self._worker_loop, name="reasoning-oracle", daemon=True)
            self._worker.start()
        logger.info(f"Reasoning oracle started with model {self.model_name}")

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._queue.put(None)
            worker = self._worker

        if worker is not None:
            worker.join(timeout=5)

        # Fail anything still queued
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                _, future = item
                future.set_result(OracleResponse.failure("Reasoning oracle stopped", self.clock()))
        logger.info("Reasoning oracle stopped")

    def submit(self, request: OracleRequest) -> Future:
        future: Future = Future()
        if not self._running:
            future.set_result(OracleResponse.failure("Reasoning oracle is not running", self.clock()))
            return future

        self._queue.put((request, future))
        return future

    def request(self, device_id: str, request_type: RequestType, context: List[ContextItem],
                priority: RequestPriority = RequestPriority.MEDIUM,
                timeout: Optional[float] = None) -> OracleResponse:
        oracle_request = OracleRequest(
            device_id=device_id,
            request_type=request_type,
            request_time_us=self.clock(),
            priority=priority,
            context_items=list(context),
        )
        future = self.submit(oracle_request)
        wait = timeout if timeout is not None else self.timeout
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError:
            logger.warning(f"Reasoning request {request_type.value} timed out after {wait}s")
            return OracleResponse.failure(f"Request timed out after {wait}s", self.clock())

    def analyze_observation(self, device_id: str, result: FrameAnalysisResult) -> OracleResponse:
        return self.request(device_id, RequestType.ANOMALY_ANALYSIS, self._observation_context(result))

    @staticmethod
    def _observation_context(result: FrameAnalysisResult) -> List[ContextItem]:
        context = [ContextItem.from_analysis_result(result)]
        context.extend(ContextItem.from_detected_object(obj) for obj in result.objects)
        return context

    def _worker_loop(self) -> None:
        while self._running:
            item = self._queue.get()
            if item is None:
                break

            request, future = item
            try:
                text = self.send_request(request.generate_prompt(), request.request_type)
                response = OracleResponse.parse(text, self.clock())
                if not response.success:
                    logger.warning(response.error_message)
            except Exception as e:
                logger.error(f"Error processing reasoning request: {e}")
                response = OracleResponse.failure(str(e), self.clock())

            if not future.done():
                future.set_result(response)

    def send_request(self, prompt: str, request_type: RequestType) -> str:
        """POST a prompt to the Messages API and return the first text block."""
        if not self.api_key:
            raise OracleError("No API key configured for the reasoning service")

        body = {
            "model": self.model_name,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": SYSTEM_PROMPTS.get(request_type, DEFAULT_SYSTEM_PROMPT),
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
        }

        try:
            response = self.session.post(self.api_endpoint, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise OracleError(f"Request to reasoning service failed: {e}") from e

        if response.status_code != 200:
            raise OracleError(f"Reasoning service returned HTTP {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            return data["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Unexpected reasoning service response shape, using raw body")
            return response.text
