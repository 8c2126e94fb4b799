"""
Backend Adapter

Executes one algorithm's backend for one feature payload.

SUPPORTED BACKENDS:
===================
- LocalBackend: returns the precomputed labels, no I/O
- RemoteServingBackend: transformer pair around a single HTTP POST

GUARANTEES:
===========
1. At most one outbound request per call, no retries
2. A features-transformer or JSON-encoding failure means no request is sent
3. Every failure is returned as a typed Error, never raised
"""

from __future__ import annotations
from typing import Callable, Optional
import json
import logging
import uuid

import httpx

from .contracts import Algorithm, Features, LocalBackend, Prediction, RemoteServingBackend
from .errors import ErrorCode, FeaturesTransformerError, LabelsTransformerError, Result

logger = logging.getLogger(__name__)


def _new_prediction_id() -> str:
    return str(uuid.uuid4())


def _valid_port(port: str) -> bool:
    return port.isdigit() and 1 <= int(port) <= 65535


class BackendAdapter:
    """
    Polymorphic executor over the closed Backend variant.

    By default each remote call opens its own httpx.AsyncClient.
    Pass `client` to share a pooled client, or `transport` to route
    requests through a custom httpx transport.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        id_factory: Callable[[], str] = _new_prediction_id
    ):
        self._timeout = timeout_seconds
        self._client = client
        self._transport = transport
        self._id_factory = id_factory

    async def execute(
        self,
        algorithm: Algorithm,
        project_id: str,
        features: Features
    ) -> Result[Prediction]:
        backend = algorithm.backend

        if isinstance(backend, LocalBackend):
            return Result.success(self._prediction(algorithm, project_id, features, backend.computed))

        if isinstance(backend, RemoteServingBackend):
            return await self._execute_remote(algorithm, backend, project_id, features)

        return Result.fail(
            ErrorCode.INVALID_ARGUMENT,
            f"Unsupported backend type: {type(backend).__name__}",
            algorithm_id=algorithm.algorithm_id
        )

    def _prediction(self, algorithm: Algorithm, project_id: str, features: Features, labels) -> Prediction:
        return Prediction(
            prediction_id=self._id_factory(),
            project_id=project_id,
            algorithm_id=algorithm.algorithm_id,
            features=features,
            labels=labels
        )

    # =========================================================================
    # REMOTE SERVING
    # =========================================================================

    async def _execute_remote(
        self,
        algorithm: Algorithm,
        backend: RemoteServingBackend,
        project_id: str,
        features: Features
    ) -> Result[Prediction]:
        algorithm_id = algorithm.algorithm_id

        try:
            request_body = json.dumps(
                backend.features_transformer.transform(features), allow_nan=False
            )
        except FeaturesTransformerError as e:
            return Result.fail(ErrorCode.FEATURES_TRANSFORMER_ERROR, str(e), algorithm_id=algorithm_id)
        except Exception as e:
            return Result.fail(
                ErrorCode.FEATURES_TRANSFORMER_ERROR,
                f"Features transformer failed: {e}",
                algorithm_id=algorithm_id
            )

        if not backend.host.strip() or not _valid_port(backend.port):
            return Result.fail(
                ErrorCode.INVALID_ARGUMENT,
                f"Invalid remote serving address {backend.host!r}:{backend.port!r}",
                algorithm_id=algorithm_id
            )
        uri = backend.uri()

        try:
            response = await self._post(uri, request_body)
        except httpx.InvalidURL as e:
            return Result.fail(ErrorCode.INVALID_ARGUMENT, str(e), algorithm_id=algorithm_id)
        except httpx.TimeoutException:
            return Result.fail(
                ErrorCode.BACKEND_ERROR,
                f"Timed out after {self._timeout}s calling {uri}",
                algorithm_id=algorithm_id
            )
        except httpx.HTTPError as e:
            return Result.fail(
                ErrorCode.BACKEND_ERROR,
                f"Request to {uri} failed: {e}",
                algorithm_id=algorithm_id
            )

        if not response.is_success:
            return Result.fail(
                ErrorCode.BACKEND_ERROR,
                f"{uri} returned HTTP {response.status_code}",
                algorithm_id=algorithm_id,
                status=str(response.status_code)
            )

        try:
            payload = response.json()
        except ValueError as e:
            return Result.fail(
                ErrorCode.BACKEND_ERROR,
                f"{uri} returned a non-JSON body: {e}",
                algorithm_id=algorithm_id
            )

        try:
            labels = backend.labels_transformer.transform(payload)
        except LabelsTransformerError as e:
            return Result.fail(ErrorCode.LABELS_TRANSFORMER_ERROR, str(e), algorithm_id=algorithm_id)
        except Exception as e:
            return Result.fail(
                ErrorCode.LABELS_TRANSFORMER_ERROR,
                f"Labels transformer failed on response from {uri}: {e}",
                algorithm_id=algorithm_id
            )

        return Result.success(self._prediction(algorithm, project_id, features, labels))

    async def _post(self, uri: str, body: str) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(uri, content=body, headers=headers, timeout=self._timeout)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            logger.debug("POST %s", uri)
            return await client.post(uri, content=body, headers=headers)
