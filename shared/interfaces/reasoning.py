"""
External reasoning oracle interfaces.
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import List, Optional

from ..models import ContextItem, OracleRequest, OracleResponse, RequestPriority, RequestType


class IReasoningOracle(ABC):
    """Interface for the optional natural-language reasoning service."""

    @abstractmethod
    def submit(self, request: OracleRequest) -> Future:
        """Queue a request; the future resolves to an OracleResponse."""
        pass

    @abstractmethod
    def request(self, device_id: str, request_type: RequestType, context: List[ContextItem],
                priority: RequestPriority = RequestPriority.MEDIUM,
                timeout: Optional[float] = None) -> OracleResponse:
        """Submit a request and wait for the response or a failure on timeout."""
        pass

    @abstractmethod
    def start(self) -> None:
        """Start the request worker."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the request worker."""
        pass
