from __future__ import annotations

from typing import Any, Dict, List, Protocol


class ModelGateway(Protocol):
    PROVIDER_ID: str

    def complete(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """Send chat messages, return the raw chat-completions response as a dict."""
