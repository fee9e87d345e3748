from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import parse_qsl, urlsplit

import httpx
import pytest

# (attempt number, endpoint, params) -> ("success" | "error" | "cancel", query) or None for no reply
Responder = Callable[[int, str, dict[str, str]], "tuple[str, dict[str, str]] | None"]


@dataclass
class LaunchedUrl:
    url: str
    scheme: str
    endpoint: str
    params: dict[str, str]
    tags: list[str]


@dataclass
class FakeDrafts:
    """Stand-in for the Drafts app: records launched URLs and answers via their callbacks."""

    responder: Responder
    calls: list[LaunchedUrl] = field(default_factory=list)

    async def __call__(self, url: str) -> None:
        parsed = urlsplit(url)
        pairs = parse_qsl(parsed.query, keep_blank_values=True)
        params = dict(pairs)
        launched = LaunchedUrl(
            url=url,
            scheme=parsed.scheme,
            endpoint=parsed.path.lstrip("/"),
            params=params,
            tags=[value for key, value in pairs if key == "tag"],
        )
        self.calls.append(launched)
        reply = self.responder(len(self.calls), launched.endpoint, params)
        if reply is None:
            return
        kind, query = reply
        async with httpx.AsyncClient(trust_env=False) as http:
            response = await http.get(params[f"x-{kind}"], params=query)
            response.raise_for_status()


@pytest.fixture
def fake_drafts() -> Callable[[Responder], FakeDrafts]:
    return FakeDrafts


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
