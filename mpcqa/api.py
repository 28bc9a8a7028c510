# mpcqa/api.py
"""
Thin JSON client for the MPC results service.

Every call is one synchronous HTTP round trip. Non-2xx responses raise
UpstreamError carrying the status and body; a 404 on a lookup the service uses
to mean "nothing there" is returned as None / [] instead.
"""
from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from mpcqa import config
from mpcqa.errors import UpstreamError, ValidationError
from mpcqa.models import (
    BeamCheckRecord,
    BeamVariant,
    DocFactor,
    GeoCheckRecord,
    Machine,
    Threshold,
    parse_date,
    to_camel_case,
)

LOG = logging.getLogger(__name__)

USER_AGENT = "mpcqa/0.1"


def _iso(d: Any) -> Optional[str]:
    return parse_date(d).isoformat() if d else None


def _flatten_beam_groups(data: Any) -> List[Dict[str, Any]]:
    # /beams answers either a flat list or [{..., "beams": [...]}, ...]
    out: List[Dict[str, Any]] = []
    for item in data or []:
        if isinstance(item, dict) and isinstance(item.get("beams"), list):
            out.extend(b for b in item["beams"] if isinstance(b, dict))
        elif isinstance(item, dict):
            out.append(item)
    return out


class ResultsClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (config.API_URL if base_url is None else base_url).rstrip("/")
        self.api_key = config.API_KEY if api_key is None else api_key
        self.timeout = config.HTTP_TIMEOUT_S if timeout is None else float(timeout)

    # =========================================================================
    # Transport
    # =========================================================================
    def _url(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        if not self.base_url:
            raise UpstreamError("Results service URL is not configured (MPCQA_API_URL)")
        url = f"{self.base_url}/{path.lstrip('/')}"
        if params:
            clean = {k: v for k, v in params.items() if v is not None and v != ""}
            if clean:
                url += "?" + urlencode(clean)
        return url

    def _send(self, method: str, path: str, *, params=None, body: Any = None, raw: bool = False) -> Any:
        url = self._url(path, params)
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.api_key:
            headers["apikey"] = self.api_key

        req = Request(url, data=data, headers=headers, method=method)
        LOG.debug("%s %s", method, url)
        try:
            with urlopen(req, timeout=self.timeout) as r:
                payload = r.read()
        except HTTPError as e:
            text = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise UpstreamError(f"{e.code} {e.reason}: {text}", status=e.code, body=text) from e
        except URLError as e:
            raise UpstreamError(f"{method} {url} failed: {e.reason}") from e
        except (OSError, HTTPException) as e:
            # timeouts, resets and truncated reads past the connect phase
            raise UpstreamError(f"{method} {url} failed: {e}") from e

        if raw:
            return payload
        if not payload:
            return None
        try:
            return to_camel_case(json.loads(payload.decode("utf-8")))
        except ValueError as e:
            raise UpstreamError(f"{method} {url}: response is not JSON", body=payload[:200].decode("utf-8", "replace")) from e

    def _get_optional(self, path: str, params=None) -> Any:
        try:
            return self._send("GET", path, params=params)
        except UpstreamError as e:
            if e.is_not_found:
                return None
            raise

    # =========================================================================
    # Reference data
    # =========================================================================
    def list_machines(self) -> List[Machine]:
        data = self._send("GET", "/machines") or []
        return [Machine.from_dict(d) for d in data]

    def list_beam_variants(self) -> List[BeamVariant]:
        data = self._get_optional("/beams/variants") or []
        return [BeamVariant.from_dict(d) for d in data]

    # =========================================================================
    # Checks
    # =========================================================================
    def list_beam_checks(self, machine_id: str, start: Any = None, end: Any = None) -> List[BeamCheckRecord]:
        data = self._get_optional("/beams", {
            "machineId": machine_id, "startDate": _iso(start), "endDate": _iso(end),
        })
        return [BeamCheckRecord.from_dict(d) for d in _flatten_beam_groups(data)]

    def list_geo_checks(self, machine_id: str, start: Any = None, end: Any = None) -> List[GeoCheckRecord]:
        data = self._get_optional("/geochecks", {
            "machine-id": machine_id, "start-date": _iso(start), "end-date": _iso(end),
        })
        return [GeoCheckRecord.from_dict(d) for d in (data or [])]

    def approve_beam_checks(self, ids: Iterable[str], approved_by: str) -> List[BeamCheckRecord]:
        ids = [i for i in ids if i]
        if not ids:
            return []
        data = self._send("POST", "/beams/accept", body={"beamIds": ids, "approvedBy": approved_by}) or []
        return [BeamCheckRecord.from_dict(d) for d in data]

    def approve_geo_checks(self, ids: Iterable[str], approved_by: str) -> List[GeoCheckRecord]:
        ids = [i for i in ids if i]
        if not ids:
            return []
        data = self._send("POST", "/geochecks/accept", body={"geoCheckIds": ids, "approvedBy": approved_by}) or []
        return [GeoCheckRecord.from_dict(d) for d in data]

    # =========================================================================
    # Thresholds
    # =========================================================================
    def list_thresholds(self) -> List[Threshold]:
        data = self._get_optional("/thresholds/all") or []
        return [Threshold.from_dict(d) for d in data]

    def upsert_threshold(self, threshold: Threshold) -> Threshold:
        data = self._send("POST", "/thresholds", body=threshold.to_dict())
        return Threshold.from_dict(data) if data else threshold

    # =========================================================================
    # DOC factors
    # =========================================================================
    def list_doc_factors(self, machine_id: Optional[str] = None) -> List[DocFactor]:
        data = self._get_optional("/docfactors", {"machineId": machine_id}) or []
        return [DocFactor.from_dict(d) for d in data]

    def create_doc_factor(self, factor: DocFactor) -> DocFactor:
        body = {k: v for k, v in factor.to_dict().items() if k not in ("id", "docFactorValue")}
        data = self._send("POST", "/docfactors", body=body)
        return DocFactor.from_dict(data) if data else factor

    def delete_doc_factor(self, factor_id: str) -> None:
        if not factor_id:
            raise ValidationError("DOC factor id is required")
        self._send("DELETE", f"/docfactors/{quote(str(factor_id), safe='')}")

    # =========================================================================
    # Reports
    # =========================================================================
    def request_report(self, payload: Mapping[str, Any]) -> bytes:
        """POST /reports/generate; returns the PDF bytes produced by the service."""
        body = {
            "startDate": _iso(payload.get("startDate")),
            "endDate": _iso(payload.get("endDate")),
            "machineId": payload.get("machineId"),
            "selectedChecks": list(payload.get("selectedChecks") or []),
        }
        return self._send("POST", "/reports/generate", body=body, raw=True) or b""
