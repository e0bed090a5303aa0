"""boto3 session and client construction."""

import logging
import threading
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from ..config import AwsConfig

logger = logging.getLogger(__name__)

# SDK retries are off: throttling is retried by utils.backoff, and every other
# failure must reach the collector untouched.
_CLIENT_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


class ClientFactory:
    """Creates and caches one boto3 client per AWS service.

    boto3 clients are thread-safe once created; creation itself is guarded
    because sources call in from worker threads.
    """

    def __init__(self, config: AwsConfig, session: Optional[boto3.session.Session] = None):
        self.config = config
        self.session = session or boto3.session.Session(
            region_name=config.region,
            profile_name=config.profile,
        )
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def region(self) -> str:
        return self.session.region_name or self.config.region

    def client(self, service_name: str) -> Any:
        with self._lock:
            if service_name not in self._clients:
                logger.debug(f"Creating {service_name} client in {self.region}")
                self._clients[service_name] = self.session.client(
                    service_name,
                    region_name=self.region,
                    config=_CLIENT_CONFIG,
                )
            return self._clients[service_name]
