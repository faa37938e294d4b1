# FILE: bookprinta/services/scanner_service.py
import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Optional

import httpx

from bookprinta.core.config import SCANNER_PROVIDER, CLAMAV_HOST, CLAMAV_PORT, VIRUSTOTAL_API_KEY
from bookprinta.core.errors import ServiceUnavailableError

logger = logging.getLogger("bookprinta.scanner")

CLAMAV_CHUNK_SIZE = 8192
CLAMAV_TIMEOUT_SECONDS = 30

VT_BASE_URL = "https://www.virustotal.com/api/v3"
VT_ANALYSIS_TIMEOUT_SECONDS = 120
VT_POLL_INTERVAL_SECONDS = 5


@dataclass
class ScanResult:
    clean: bool
    reason: Optional[str] = None


class ClamAVScanner:
    """clamd over TCP using the INSTREAM command."""

    name = "clamav"

    def __init__(self, host: str = CLAMAV_HOST, port: int = CLAMAV_PORT, timeout: float = CLAMAV_TIMEOUT_SECONDS):
        self.host = host
        self.port = port
        self.timeout = timeout

    async def _roundtrip(self, payload: bytes) -> str:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(payload)
            await writer.drain()
            data = await reader.read()
        finally:
            writer.close()
            await writer.wait_closed()
        return data.decode("utf-8", errors="replace").strip("\x00 \n")

    def _instream_payload(self, buffer: bytes) -> bytes:
        parts = [b"zINSTREAM\x00"]
        for i in range(0, len(buffer), CLAMAV_CHUNK_SIZE):
            chunk = buffer[i:i + CLAMAV_CHUNK_SIZE]
            parts.append(struct.pack(">I", len(chunk)))
            parts.append(chunk)
        # zero-length chunk terminates the stream
        parts.append(struct.pack(">I", 0))
        return b"".join(parts)

    async def scan_buffer(self, buffer: bytes, filename: str) -> ScanResult:
        logger.debug("Scanning %r (%d bytes) via ClamAV", filename, len(buffer))
        try:
            response = await asyncio.wait_for(self._roundtrip(self._instream_payload(buffer)), self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.error("ClamAV unreachable at %s:%s: %s", self.host, self.port, e)
            raise ServiceUnavailableError("File scanner is unavailable. Please try again later.") from e

        # "stream: OK" or "stream: Eicar-Test-Signature FOUND"
        if response.endswith("OK"):
            return ScanResult(clean=True)
        reason = response.split(":", 1)[-1].replace("FOUND", "").strip() or "Unknown threat"
        logger.warning("ClamAV flagged %r: %s", filename, reason)
        return ScanResult(clean=False, reason=reason)

    async def ping(self) -> bool:
        try:
            return (await asyncio.wait_for(self._roundtrip(b"zPING\x00"), self.timeout)) == "PONG"
        except (OSError, asyncio.TimeoutError):
            return False


class VirusTotalScanner:
    """VirusTotal v3: upload, then poll the analysis until it completes."""

    name = "virustotal"

    def __init__(self, api_key: str = VIRUSTOTAL_API_KEY, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=VT_BASE_URL,
            headers={"x-apikey": self.api_key},
            timeout=30,
            transport=self._transport,
        )

    async def scan_buffer(self, buffer: bytes, filename: str) -> ScanResult:
        if not self.api_key:
            raise ServiceUnavailableError("File scanner is not configured.")
        try:
            async with self._client() as client:
                resp = await client.post("/files", files={"file": (filename, buffer)})
                resp.raise_for_status()
                analysis_id = resp.json()["data"]["id"]

                loop = asyncio.get_running_loop()
                deadline = loop.time() + VT_ANALYSIS_TIMEOUT_SECONDS
                while loop.time() < deadline:
                    resp = await client.get(f"/analyses/{analysis_id}")
                    resp.raise_for_status()
                    attrs = resp.json()["data"]["attributes"]
                    if attrs.get("status") == "completed":
                        malicious = (attrs.get("stats") or {}).get("malicious", 0)
                        if malicious:
                            logger.warning("VirusTotal flagged %r (%d engines)", filename, malicious)
                            return ScanResult(clean=False, reason=f"{malicious} engines flagged the file")
                        return ScanResult(clean=True)
                    await asyncio.sleep(VT_POLL_INTERVAL_SECONDS)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("VirusTotal scan failed for %r: %s", filename, e)
            raise ServiceUnavailableError("File scanner is unavailable. Please try again later.") from e

        logger.error("VirusTotal analysis for %r timed out", filename)
        raise ServiceUnavailableError("File scan timed out. Please try again later.")

    async def ping(self) -> bool:
        if not self.api_key:
            return False
        try:
            async with self._client() as client:
                resp = await client.get("/users/me")
            return resp.status_code == 200
        except httpx.HTTPError:
            return False


def build_scanner(provider: str = SCANNER_PROVIDER):
    if provider == "virustotal":
        return VirusTotalScanner()
    return ClamAVScanner()
