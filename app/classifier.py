"""
classifier.py — Breed Classification Service Client
Cattle Breed Recognition API

HTTP client for the external ML scoring service:
    GET  /health              liveness
    POST /predict             multipart image → {prediction, confidence, ...}
    GET  /breeds              {breeds: [...]}
    GET  /breed-info/{name}   breed metadata
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from app.config import settings
from app.errors import InvalidRequest, NotFound, ServiceUnavailable, UpstreamError


# ── Wire format ───────────────────────────────────────────────────────────────
class ScoringResponse(BaseModel):
    prediction: Optional[str] = None
    confidence: Optional[float] = None
    processing_time: Optional[float] = None
    breed_info: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class BreedPrediction:
    breed_name: str
    confidence: float
    processing_time: Optional[float] = None   # as reported by the scorer
    additional_info: Optional[Dict[str, Any]] = None


# ── Client ────────────────────────────────────────────────────────────────────
class ClassifierClient:
    def __init__(
        self,
        base_url: str = settings.CLASSIFIER_API_URL,
        health_timeout: float = settings.CLASSIFIER_HEALTH_TIMEOUT,
        predict_timeout: float = settings.CLASSIFIER_PREDICT_TIMEOUT,
        metadata_timeout: float = settings.CLASSIFIER_METADATA_TIMEOUT,
        max_response_bytes: int = settings.MAX_UPLOAD_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.health_timeout = health_timeout
        self.predict_timeout = predict_timeout
        self.metadata_timeout = metadata_timeout
        self.max_response_bytes = max_response_bytes
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def _read_json(self, resp: httpx.Response) -> Any:
        declared = resp.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_response_bytes:
            raise UpstreamError("Classification service response too large")
        body = bytearray()
        async for chunk in resp.aiter_bytes():
            body.extend(chunk)
            if len(body) > self.max_response_bytes:
                raise UpstreamError("Classification service response too large")
        try:
            return json.loads(body)
        except ValueError:
            raise UpstreamError("Classification service returned malformed JSON")

    # ── Liveness ──────────────────────────────────────────────────────────────
    async def is_healthy(self) -> bool:
        try:
            async with self._client(self.health_timeout) as client:
                resp = await client.get("/health")
            return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Classifier health check failed: {e!r}")
            return False

    async def connection_status(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            async with self._client(self.health_timeout) as client:
                resp = await client.get("/health")
                resp.raise_for_status()
            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            try:
                version = resp.json().get("version", "unknown")
            except (ValueError, AttributeError):
                version = "unknown"
            return {"isConnected": True, "responseTime": elapsed_ms, "version": version}
        except httpx.HTTPError as e:
            return {"isConnected": False, "error": str(e) or e.__class__.__name__}

    # ── Scoring ───────────────────────────────────────────────────────────────
    async def predict(self, image: bytes, filename: str, content_type: str = "image/jpeg") -> BreedPrediction:
        files = {"image": (filename, image, content_type)}
        try:
            async with self._client(self.predict_timeout) as client:
                async with client.stream("POST", "/predict", files=files) as resp:
                    if resp.status_code == 400:
                        raise InvalidRequest("Invalid image format or corrupted file")
                    if resp.status_code >= 500:
                        raise UpstreamError("Classification service failed to process the image")
                    if resp.status_code != 200:
                        raise UpstreamError(f"Classification service answered HTTP {resp.status_code}")
                    payload = await self._read_json(resp)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.error(f"Classifier unreachable at {self.base_url}: {e!r}")
            raise ServiceUnavailable("Prediction service is temporarily unavailable")
        except httpx.TimeoutException:
            raise UpstreamError("Classification service timed out")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Classification request failed: {e}")

        try:
            parsed = ScoringResponse.model_validate(payload)
        except ValidationError:
            raise UpstreamError("Classification service returned an unexpected payload")
        if parsed.error:
            raise UpstreamError(f"Classification service error: {parsed.error}")
        if parsed.prediction is None or parsed.confidence is None:
            raise UpstreamError("Classification service returned no prediction")

        return BreedPrediction(
            breed_name=parsed.prediction,
            confidence=parsed.confidence,
            processing_time=parsed.processing_time,
            additional_info=parsed.breed_info,
        )

    # ── Breed catalogue ───────────────────────────────────────────────────────
    async def _get_metadata(self, path: str) -> httpx.Response:
        try:
            async with self._client(self.metadata_timeout) as client:
                return await client.get(path)
        except (httpx.ConnectError, httpx.ConnectTimeout):
            raise ServiceUnavailable("Prediction service is temporarily unavailable")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Classification request failed: {e}")

    async def list_breeds(self) -> List[str]:
        resp = await self._get_metadata("/breeds")
        if resp.status_code != 200:
            raise UpstreamError(f"Classification service answered HTTP {resp.status_code}")
        try:
            return list(resp.json().get("breeds") or [])
        except (ValueError, AttributeError):
            raise UpstreamError("Classification service returned an unexpected payload")

    async def breed_info(self, breed_name: str) -> Dict[str, Any]:
        resp = await self._get_metadata(f"/breed-info/{quote(breed_name, safe='')}")
        if resp.status_code == 404:
            raise NotFound("Breed information not found")
        if resp.status_code != 200:
            raise UpstreamError(f"Classification service answered HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError:
            raise UpstreamError("Classification service returned malformed JSON")
