"""
Prediction Publishers

At-least-once publication of predictions to a named stream.
The dispatcher publishes fire-and-forget; publisher failures never change
a dispatch result.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
import logging

import httpx

from .contracts import Prediction
from .serialization import dumps, prediction_to_dict

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Stream endpoint rejected or failed to receive an event."""


class PredictionPublisher(ABC):
    """Abstract event publisher."""

    @abstractmethod
    async def publish(self, prediction: Prediction, stream_name: str, partition_key: str) -> None:
        pass

    async def close(self) -> None:
        """Release held resources. Default: nothing held."""


class InMemoryPublisher(PredictionPublisher):
    """Records published events; used by tests and local runs."""

    def __init__(self):
        self._events: List[Tuple[str, str, Prediction]] = []

    async def publish(self, prediction: Prediction, stream_name: str, partition_key: str) -> None:
        self._events.append((stream_name, partition_key, prediction))

    @property
    def events(self) -> Tuple[Tuple[str, str, Prediction], ...]:
        return tuple(self._events)


class HttpStreamPublisher(PredictionPublisher):
    """
    Publishes each prediction as a JSON record via HTTP.

    POST {endpoint}/streams/{stream_name}
    body: {"partition_key": ..., "data": <prediction>}
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def publish(self, prediction: Prediction, stream_name: str, partition_key: str) -> None:
        url = f"{self._endpoint}/streams/{stream_name}"
        body = dumps({"partition_key": partition_key, "data": prediction_to_dict(prediction)})

        try:
            response = await self._get_client().post(
                url,
                content=body,
                headers={"Content-Type": "application/json"}
            )
        except httpx.TimeoutException as e:
            raise PublishError(f"Timed out publishing to {url}") from e
        except httpx.HTTPError as e:
            raise PublishError(f"Failed publishing to {url}: {e}") from e

        if response.status_code >= 300:
            raise PublishError(f"Stream endpoint {url} returned HTTP {response.status_code}")

        logger.debug("Published prediction %s to %s", prediction.prediction_id, stream_name)

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
