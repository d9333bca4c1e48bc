"""
Test utilities for the Paygate gateway
"""

import json
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import httpx

Responder = Union[int, Callable[[httpx.Request], httpx.Response]]


class WebhookReceiver:
    """
    Stand-in for subscriber endpoints, wired into the dispatcher's httpx client

    Responses are consumed in order from a script; once the script is empty
    every request gets ``default_status``.
    """

    def __init__(self, default_status: int = 200):
        self.default_status = default_status
        self.requests: List[httpx.Request] = []
        self._script: Deque[Responder] = deque()
        self.transport = httpx.MockTransport(self._handle)

    def respond_with(self, *responses: Responder) -> "WebhookReceiver":
        self._script.extend(responses)
        return self

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self._script.popleft() if self._script else self.default_status
        if callable(responder):
            return responder(request)
        return httpx.Response(responder, text="ok" if responder < 400 else "error")

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [request for request in self.requests if str(request.url) == url]


def refuse_connection(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class ProviderStub:
    """
    Canned payment backend answers keyed by ``(method, path suffix)``

    Unmatched calls get a 404 so a test never silently hits the wrong route.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        self.calls: List[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def on(self, method: str, path: str, body: Any = None, status: int = 200) -> "ProviderStub":
        self.routes[(method.upper(), path)] = (status, body if body is not None else {})
        return self

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        for (method, path), (status, body) in self.routes.items():
            if request.method == method and request.url.path.endswith(path):
                return httpx.Response(status, json=body)
        return httpx.Response(404, json={"error": "no stub for " + request.url.path})

    def last_call(self, path: Optional[str] = None) -> httpx.Request:
        calls = [call for call in self.calls if path is None or call.url.path.endswith(path)]
        assert calls, f"No backend call recorded for {path}"
        return calls[-1]

    def last_json(self, path: Optional[str] = None) -> Dict[str, Any]:
        return json.loads(self.last_call(path).content)

    def last_form(self, path: Optional[str] = None) -> Dict[str, str]:
        pairs = httpx.QueryParams(self.last_call(path).content.decode())
        return dict(pairs)


def assert_error(response: httpx.Response, status_code: int, code: str) -> Dict[str, Any]:
    """Assert the standard error envelope and return its ``error`` object"""
    assert response.status_code == status_code, response.text
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == code
    return body["error"]


def get_metrics_values(metrics_text: str, metric_name: str) -> Dict[str, float]:
    """
    Parse Prometheus metrics text and extract values for a specific metric

    Args:
        metrics_text: Raw Prometheus metrics text
        metric_name: Name of the metric to extract

    Returns:
        Dictionary mapping metric labels to values
    """
    metrics = {}
    lines = metrics_text.split('\n')

    for line in lines:
        line = line.strip()
        if line.startswith(metric_name):
            # Parse line like: metric_name{label1="value1",label2="value2"} 123.0
            if '{' in line and '}' in line:
                parts = line.split('}')
                if len(parts) >= 2:
                    labels_part = parts[0] + '}'
                    value_part = parts[1].strip()
                    try:
                        metrics[labels_part] = float(value_part)
                    except ValueError:
                        continue
            elif line.count(' ') >= 1:
                parts = line.rsplit(' ', 1)
                try:
                    metrics[metric_name] = float(parts[1])
                except (ValueError, IndexError):
                    continue

    return metrics
