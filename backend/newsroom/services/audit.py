import asyncio
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class AuditSink:
    """Writes raw model responses to `{directory}/{tag}_{timestamp}.json`."""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _write(self, payload: Any, tag: str, timestamp: int) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{tag}_{timestamp}.json"
        path.write_text(json.dumps(payload, indent=2, default=str))
        return path

    async def save(self, response: Any, tag: str, timestamp: int) -> None:
        """Best effort: failures are logged and never raised."""
        try:
            payload = response.model_dump() if hasattr(response, "model_dump") else response
            path = await asyncio.to_thread(self._write, payload, tag, timestamp)
            logger.debug(f"Saved {tag} response to {path}")
        except Exception as e:
            logger.warning(f"Failed to save {tag} response for audit: {str(e)}")
