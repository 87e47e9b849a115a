"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from mockms.bootstrap.config import ServerConfig
from mockms.domain.http_types import Handler
from mockms.lifecycle.state import ServerLifecycle


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    config: ServerConfig
    handler: Handler
    lifecycle: Optional[ServerLifecycle] = None
