"""
Backend clients for task execution.

Supports:
- Primary gateway: OpenAI-compatible multi-model gateway (openai SDK)
- Secondary inference: Hugging Face style hosted inference (httpx)
- Local inference: in-process transformers pipelines

Each client makes exactly one call per invocation. Retries and fallback
belong to the executor.
"""

from __future__ import annotations

import asyncio
import base64
import math
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx
import openai
from dotenv import load_dotenv

from .capability import CapabilityDetector
from .config import GatewayConfig, SecondaryInferenceConfig
from .types import Backend, BackendExecutionError, MisconfiguredEnvironment, TaskType

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

DEFAULT_LABELS = ["positive", "negative", "neutral"]


def require_env(name: str) -> str:
    """Read a credential from the environment or fail as misconfigured."""
    value = os.environ.get(name)
    if not value:
        raise MisconfiguredEnvironment(
            f"Missing credential. Set {name} environment variable.", details=f"env={name}"
        )
    return value


def split_classification_input(input: Any) -> tuple[str, list[str]]:
    """Accept either raw text or {"text": ..., "labels": [...]}."""
    if isinstance(input, dict):
        return str(input.get("text", "")), list(input.get("labels") or DEFAULT_LABELS)
    return str(input), list(DEFAULT_LABELS)


def as_messages(input: Any) -> list[dict[str, str]]:
    """Normalize chat input to a list of role/content messages."""
    if isinstance(input, str):
        return [{"role": "user", "content": input}]
    if isinstance(input, dict) and "messages" in input:
        input = input["messages"]
    return [
        m if isinstance(m, dict) else {"role": m.role.value, "content": m.content}
        for m in input
    ]


class RemoteBackend(ABC):
    """Abstract base class for hosted backends."""

    backend: Backend

    @abstractmethod
    async def invoke(self, task: TaskType, model: str, input: Any) -> Any:
        """Run one task on the remote service and return its result."""
        ...


class GatewayClient(RemoteBackend):
    """Primary gateway client (OpenAI-compatible API)."""

    backend = Backend.PRIMARY_GATEWAY

    def __init__(
        self,
        config: GatewayConfig | None = None,
        api_key: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        self.config = config or GatewayConfig()
        if client is None:
            api_key = api_key or require_env(self.config.api_key_env)
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_s,
            )
        self.client = client

    async def invoke(self, task: TaskType, model: str, input: Any) -> Any:
        try:
            match task:
                case TaskType.CHAT | TaskType.TEXT_GENERATION:
                    response = await self.client.chat.completions.create(
                        model=model,
                        messages=as_messages(input),
                    )
                    return response.choices[0].message.content or ""

                case TaskType.EMBEDDING:
                    response = await self.client.embeddings.create(model=model, input=input)
                    vectors = [item.embedding for item in response.data]
                    return vectors[0] if isinstance(input, str) else vectors

                case TaskType.CLASSIFICATION:
                    return await self._classify(model, input)

                case TaskType.IMAGE_GEN:
                    response = await self.client.images.generate(model=model, prompt=str(input))
                    image = response.data[0]
                    return image.url or image.b64_json

                case TaskType.OBJECT_DETECTION | TaskType.CAPTIONING:
                    raise BackendExecutionError(self.backend, f"{task.value} not supported")
        except openai.APIStatusError as e:
            raise BackendExecutionError(self.backend, str(e), upstream_status=e.status_code) from e
        except openai.OpenAIError as e:
            raise BackendExecutionError(self.backend, str(e)) from e

    async def _classify(self, model: str, input: Any) -> dict[str, Any]:
        """Zero-shot classification by asking the model to pick a label."""
        text, labels = split_classification_input(input)
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {
                    "role": "system",
                    "content": "Classify the text. Reply with exactly one label from: "
                    + ", ".join(labels),
                },
                {"role": "user", "content": text},
            ],
            temperature=0.0,
        )
        answer = (response.choices[0].message.content or "").strip().lower()
        chosen = next((label for label in labels if label.lower() in answer), labels[0])
        ordered = [chosen, *[label for label in labels if label != chosen]]
        return {
            "sequence": text,
            "labels": ordered,
            "scores": [1.0 if label == chosen else 0.0 for label in ordered],
        }


class SecondaryInferenceClient(RemoteBackend):
    """Hosted inference client (Hugging Face Inference API wire format)."""

    backend = Backend.SECONDARY_INFERENCE

    def __init__(
        self,
        config: SecondaryInferenceConfig | None = None,
        api_key: str | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.config = config or SecondaryInferenceConfig()
        self.api_key = api_key or require_env(self.config.api_key_env)
        self.http = http or httpx.AsyncClient(timeout=self.config.timeout_s)

    async def invoke(self, task: TaskType, model: str, input: Any) -> Any:
        match task:
            case TaskType.CHAT | TaskType.TEXT_GENERATION:
                payload = {"inputs": self._prompt(input), "parameters": {"return_full_text": False}}
            case TaskType.EMBEDDING:
                payload = {"inputs": input}
            case TaskType.CLASSIFICATION:
                text, labels = split_classification_input(input)
                payload = {"inputs": text, "parameters": {"candidate_labels": labels}}
            case TaskType.IMAGE_GEN:
                payload = {"inputs": str(input)}
            case TaskType.OBJECT_DETECTION | TaskType.CAPTIONING:
                raise BackendExecutionError(self.backend, f"{task.value} not supported")

        try:
            response = await self.http.post(
                f"{self.config.base_url}/models/{model}",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendExecutionError(
                self.backend, str(e), upstream_status=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise BackendExecutionError(self.backend, str(e)) from e

        if task is TaskType.IMAGE_GEN:
            return base64.b64encode(response.content).decode("ascii")

        data = response.json()
        if task in (TaskType.CHAT, TaskType.TEXT_GENERATION):
            if isinstance(data, list) and data:
                return data[0].get("generated_text", "")
            return data.get("generated_text", "") if isinstance(data, dict) else str(data)
        return data

    @staticmethod
    def _prompt(input: Any) -> str:
        if isinstance(input, str):
            return input
        return "\n".join(f"{m['role']}: {m['content']}" for m in as_messages(input))


# Task name used by the transformers pipeline factory
PIPELINE_TASKS: dict[TaskType, str] = {
    TaskType.EMBEDDING: "feature-extraction",
    TaskType.CLASSIFICATION: "zero-shot-classification",
    TaskType.OBJECT_DETECTION: "object-detection",
    TaskType.CAPTIONING: "image-to-text",
}


def mean_pool_normalized(token_vectors: list[list[float]]) -> list[float]:
    """Mean-pool token embeddings and L2-normalize the result."""
    if not token_vectors:
        return []
    width = len(token_vectors[0])
    pooled = [sum(vec[i] for vec in token_vectors) / len(token_vectors) for i in range(width)]
    norm = math.sqrt(sum(x * x for x in pooled))
    return [x / norm for x in pooled] if norm > 0 else pooled


class LocalPipeline:
    """
    In-process inference through transformers pipelines.

    Pipelines are created on first use per (task, model) and run in a
    worker thread so they never block the event loop.
    """

    backend = Backend.LOCAL_INFERENCE

    def __init__(self, detector: CapabilityDetector | None = None):
        self.detector = detector or CapabilityDetector()
        self._pipelines: dict[tuple[TaskType, str], Any] = {}

    def _load(self, task: TaskType, model: str) -> Any:
        key = (task, model)
        if key not in self._pipelines:
            if task not in PIPELINE_TASKS:
                raise BackendExecutionError(self.backend, f"{task.value} not supported locally")
            try:
                from transformers import pipeline
            except ImportError as e:
                raise BackendExecutionError(self.backend, "transformers not installed") from e
            self._pipelines[key] = pipeline(
                PIPELINE_TASKS[task], model=model, device=self.detector.preferred_device()
            )
        return self._pipelines[key]

    async def run(self, task: TaskType, model: str, input: Any) -> Any:
        """Run one task in-process and return the raw task output."""
        return await asyncio.to_thread(self._run_sync, task, model, input)

    def _run_sync(self, task: TaskType, model: str, input: Any) -> Any:
        pipe = self._load(task, model)

        match task:
            case TaskType.EMBEDDING:
                texts = [input] if isinstance(input, str) else list(input)
                vectors = [mean_pool_normalized(pipe(text)[0]) for text in texts]
                return vectors[0] if isinstance(input, str) else vectors
            case TaskType.CLASSIFICATION:
                text, labels = split_classification_input(input)
                return pipe(text, candidate_labels=labels)
            case TaskType.OBJECT_DETECTION | TaskType.CAPTIONING:
                return pipe(input)
            case _:
                raise BackendExecutionError(self.backend, f"{task.value} not supported locally")


__all__ = [
    "DEFAULT_LABELS",
    "GatewayClient",
    "LocalPipeline",
    "PIPELINE_TASKS",
    "RemoteBackend",
    "SecondaryInferenceClient",
    "as_messages",
    "mean_pool_normalized",
    "require_env",
    "split_classification_input",
]
