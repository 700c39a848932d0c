"""
Pluggable malware scanning.
The pipeline only needs a verdict; the scanning engine lives elsewhere.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

import httpx

from docvault.database import utcnow

logger = logging.getLogger("docvault.malware_scan")


class ScanVerdict(str, Enum):
    CLEAN = "clean"
    INFECTED = "infected"
    UNKNOWN = "unknown"


@dataclass
class ScanResult:
    verdict: ScanVerdict
    engine: str
    threats: list[str] = field(default_factory=list)
    error: str | None = None
    scanned_at: str = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "engine": self.engine,
            "threats": list(self.threats),
            "error": self.error,
            "scanned_at": self.scanned_at,
        }


class MalwareScanner:
    engine = "none"

    def scan(self, data: bytes, filename: str) -> ScanResult:
        raise NotImplementedError


class HttpMalwareScanner(MalwareScanner):
    """Submits the payload to a scan service that answers
    ``{"status": "clean" | "infected", "threats": [...]}``.

    Transport failures and unreadable replies come back as ``UNKNOWN`` with
    ``error`` set; whether that blocks an upload is the validator's policy.
    """

    engine = "http"

    def __init__(self, url: str, timeout: float = 30.0, client: httpx.Client | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def scan(self, data: bytes, filename: str) -> ScanResult:
        try:
            response = self._client.post(self.url, files={"file": (filename, data)})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Malware scan of %s failed: %s", filename, exc)
            return ScanResult(verdict=ScanVerdict.UNKNOWN, engine=self.engine, error=f"Scan failed: {exc}")

        if not isinstance(payload, dict):
            return ScanResult(verdict=ScanVerdict.UNKNOWN, engine=self.engine,
                              error="Unrecognised scanner response")

        status = str(payload.get("status", "")).lower()
        threats = payload.get("threats") or []
        if not isinstance(threats, list):
            threats = [threats]
        threats = [str(t) for t in threats]
        if status == "infected" or threats:
            return ScanResult(verdict=ScanVerdict.INFECTED, engine=self.engine, threats=threats)
        if status == "clean":
            return ScanResult(verdict=ScanVerdict.CLEAN, engine=self.engine)
        return ScanResult(verdict=ScanVerdict.UNKNOWN, engine=self.engine)

    def close(self):
        self._client.close()
