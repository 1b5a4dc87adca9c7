"""
AFTClient SDK — sync client for AFT-Engine.

Used by front ends and integrating services to create requests, drive them
through the lifecycle, record signatures and read the audit trail.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx


@dataclass
class ClientRequest:
    """AFT request info returned by the SDK."""

    id: str
    request_number: str
    status: str
    version: int
    requestor_id: str
    classification: str
    transfer_type: str
    enable_dual_signature: bool = False
    rejection_reason: Optional[str] = None
    approval_data: dict[str, Any] = field(default_factory=dict)
    transfer_data: dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


@dataclass
class ClientActionResult:
    """Result of perform_action()."""

    success: bool
    code: str = ""
    message: str = ""
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    audit_entry_id: Optional[str] = None
    request: Optional[ClientRequest] = None


class AFTClient:
    """
    Synchronous HTTP client for AFT-Engine.

    Every call is made as ``actor_id`` (sent as ``X-AFT-Actor-Id``); the API
    key authenticates the calling service.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        api_key: Optional[str] = None,
        actor_id: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.actor_id = actor_id
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
        )

    def _headers(self, actor_id: Optional[str] = None) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["X-AFT-Api-Key"] = self.api_key
        actor = actor_id or self.actor_id
        if actor:
            headers["X-AFT-Actor-Id"] = actor
        return headers

    def _request(
        self,
        method: str,
        path: str,
        actor_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Central HTTP method with retry and structured error handling.

        Retries on timeouts, transport errors, 5xx and 429. Other 4xx
        responses are returned as ``{"error", "code", "detail"}`` taken from
        the server's error body. A lifecycle action answered with a 5xx did
        not commit, so retrying it is safe.
        """
        kwargs.setdefault("headers", self._headers(actor_id))
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(path, **kwargs)
                if resp.status_code >= 500 or resp.status_code == 429:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_backoff_base * (2 ** attempt))
                        continue
                    return self._error_body(resp, "SERVER_ERROR")
                if resp.status_code >= 400:
                    return self._error_body(resp, "CLIENT_ERROR")
                return resp.json()
            except httpx.TimeoutException:
                last_error = "timeout"
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except httpx.HTTPError as e:
                last_error = str(e)
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except json.JSONDecodeError:
                return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

        return {"error": f"All {self.max_retries} retries exhausted: {last_error}", "code": "CONNECTION_ERROR"}

    @staticmethod
    def _error_body(resp: httpx.Response, fallback_code: str) -> dict[str, Any]:
        try:
            body = resp.json()
        except json.JSONDecodeError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        detail = body.get("detail", "")
        return {
            "error": body.get("error") or f"HTTP {resp.status_code}",
            "code": body.get("code") or fallback_code,
            "detail": detail if isinstance(detail, str) else json.dumps(detail),
            "status_code": resp.status_code,
        }

    @staticmethod
    def _parse_request(data: dict) -> ClientRequest:
        updated_at = None
        if data.get("updated_at"):
            try:
                updated_at = datetime.fromisoformat(data["updated_at"])
            except (ValueError, TypeError):
                pass

        return ClientRequest(
            id=data.get("id", ""),
            request_number=data.get("request_number", ""),
            status=data.get("status", ""),
            version=data.get("version", 0),
            requestor_id=data.get("requestor_id", ""),
            classification=data.get("classification", ""),
            transfer_type=data.get("transfer_type", ""),
            enable_dual_signature=data.get("enable_dual_signature", False),
            rejection_reason=data.get("rejection_reason"),
            approval_data=data.get("approval_data") or {},
            transfer_data=data.get("transfer_data") or {},
            updated_at=updated_at,
        )

    # ── Requests ──

    def create_request(
        self,
        classification: str,
        transfer_type: str,
        actor_id: Optional[str] = None,
        **fields: Any,
    ) -> Optional[ClientRequest]:
        """Create a draft request; returns None on failure."""
        body = {"classification": classification, "transfer_type": transfer_type, **fields}
        data = self._request("post", "/requests", actor_id=actor_id, json=body)
        if "error" in data:
            return None
        return self._parse_request(data)

    def get_request(self, request_id: str) -> Optional[ClientRequest]:
        data = self._request("get", f"/requests/{request_id}")
        if "error" in data:
            return None
        return self._parse_request(data)

    def list_requests(
        self, status: Optional[str] = None, requestor_id: Optional[str] = None,
    ) -> list[ClientRequest]:
        params = {k: v for k, v in (("status", status), ("requestor_id", requestor_id)) if v}
        data = self._request("get", "/requests", params=params)
        if "error" in data:
            return []
        return [self._parse_request(item) for item in data.get("items", [])]

    # ── Actions ──

    def perform_action(
        self,
        request_id: str,
        action: str,
        payload: Optional[dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> ClientActionResult:
        """Perform a lifecycle action (``submit``, ``dao-approve``, ...)."""
        data = self._request(
            "post", f"/requests/{request_id}/{action}",
            actor_id=actor_id, json=payload or {},
        )
        if "error" in data:
            return ClientActionResult(
                success=False,
                code=data.get("code", "ERROR"),
                message=data.get("detail") or data.get("error", ""),
            )
        return ClientActionResult(
            success=True,
            from_status=data.get("from_status"),
            to_status=data.get("to_status"),
            audit_entry_id=data.get("audit_entry_id"),
            request=self._parse_request(data["request"]) if data.get("request") else None,
        )

    def available_actions(self, request_id: str, actor_id: Optional[str] = None) -> list[str]:
        data = self._request(
            "get", f"/requests/{request_id}/available-actions", actor_id=actor_id,
        )
        if "error" in data:
            return []
        return data.get("actions", [])

    # ── Signatures ──

    def record_signature(
        self,
        request_id: str,
        step_type: str,
        signature_material: str,
        certificate_thumbprint: str,
        actor_id: Optional[str] = None,
        **fields: Any,
    ) -> dict[str, Any]:
        body = {
            "step_type": step_type,
            "signature_material": signature_material,
            "certificate_thumbprint": certificate_thumbprint,
            **fields,
        }
        return self._request(
            "post", f"/requests/{request_id}/signatures", actor_id=actor_id, json=body,
        )

    # ── Audit ──

    def audit_entries(self, request_id: Optional[str] = None, **filters: Any) -> list[dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        if request_id:
            params["request_id"] = request_id
        data = self._request("get", "/audit", params=params)
        if isinstance(data, dict) and "error" in data:
            return []
        return data

    def verify_audit(self, request_id: str) -> bool:
        data = self._request("get", f"/audit/{request_id}/verify")
        return bool(data.get("valid", False))

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()
