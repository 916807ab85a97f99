from __future__ import annotations

"""InfluxDB line-protocol formatting and delivery for zone statistics.

Inputs:
  - Aggregator reports (already formatted lines) concatenated into one body.
  - Writer settings: server, port, database, optional user/password.

Outputs:
  - format_line(): one line-protocol line without timestamp.
  - InfluxWriter.write(): single HTTP POST of the body to /write?db=<db>.
  - InfluxWriter.render(): the exact request as text, used in dry-run mode
    so no network access is needed.
"""

import logging
import sys
from typing import Any, Dict, Mapping, Optional, TextIO

import requests
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Brief: Metrics could not be delivered to the InfluxDB endpoint."""

    pass


def _escape_tag(value: str) -> str:
    """Brief: Escape a measurement, tag key/value or field key.

    Inputs:
        value: Raw string.

    Outputs:
        Value with backslashes, commas, spaces and equals signs escaped.
    """

    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace(" ", "\\ ")
        .replace("=", "\\=")
    )


def _escape_field_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_line(
    measurement: str,
    tags: Mapping[str, Optional[Any]],
    fields: Mapping[str, Any],
) -> str:
    """Brief: Format a single InfluxDB line-protocol entry.

    Inputs:
        measurement: Measurement name.
        tags: Mapping of tag keys to values; None values are skipped.
        fields: Mapping of field keys to values (ints, floats, bools or
            strings), emitted in mapping order; None values are skipped.

    Outputs:
        Line terminated by a newline, or "" when no field has a value.

    Example:
        >>> format_line("CountDom", {"tld": "se", "source": "file"}, {"value": 3})
        'CountDom,tld=se,source=file value=3i\\n'
    """

    tag_parts = []
    for k, v in tags.items():
        if v is None:
            continue
        tag_parts.append(f"{_escape_tag(str(k))}={_escape_tag(str(v))}")
    tag_section = "" if not tag_parts else "," + ",".join(tag_parts)

    field_parts = []
    for k, v in fields.items():
        key = _escape_tag(str(k))
        if v is None:
            continue
        if isinstance(v, bool):
            field_parts.append(f"{key}={'true' if v else 'false'}")
        elif isinstance(v, int):
            field_parts.append(f"{key}={v}i")
        elif isinstance(v, float):
            field_parts.append(f"{key}={v}")
        else:
            field_parts.append(f"{key}={_escape_field_string(str(v))}")

    if not field_parts:
        return ""
    return f"{_escape_tag(measurement)}{tag_section} {','.join(field_parts)}\n"


class InfluxWriter:
    """Brief: Deliver a line-protocol body to an InfluxDB 1.x style /write endpoint.

    Inputs (constructor):
        server: Host name or address of the InfluxDB server.
        database: Target database, sent as the ``db`` query parameter.
        port: HTTP port (default 8086).
        scheme: "http" or "https".
        user / password: Optional basic-auth credentials (both or neither).
        timeout: Request timeout in seconds.
        session: Optional requests.Session (tests inject a fake).

    Outputs:
        InfluxWriter instance; nothing is sent until write() or deliver().
    """

    def __init__(
        self,
        server: str,
        database: str,
        *,
        port: int = 8086,
        scheme: str = "http",
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.server = str(server)
        self.database = str(database)
        self.port = int(port)
        self.scheme = str(scheme or "http").lower()
        self.user = user or None
        self.password = password or None
        self.timeout = float(timeout)
        self._session = session

    @property
    def url(self) -> str:
        host = self.server
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        return f"{self.scheme}://{host}:{self.port}/write"

    @property
    def params(self) -> Dict[str, str]:
        return {"db": self.database}

    @property
    def auth(self) -> Optional[HTTPBasicAuth]:
        if self.user is None:
            return None
        return HTTPBasicAuth(self.user, self.password or "")

    def prepare(self, body: str) -> requests.PreparedRequest:
        """Brief: Build the POST request for body without sending it."""

        req = requests.Request(
            "POST",
            self.url,
            params=self.params,
            data=body.encode("utf-8"),
            auth=self.auth,
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
        return req.prepare()

    def render(self, body: str) -> str:
        """Brief: Render the request that write() would send as plain text.

        Outputs:
            Multi-line string: request line, one line per header, a blank
            line and the body.
        """

        prepared = self.prepare(body)
        lines = [f"{prepared.method} {prepared.url}"]
        for name, value in prepared.headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")
        payload = prepared.body or b""
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        lines.append(payload)
        return "\n".join(lines)

    def write(self, body: str) -> None:
        """Brief: POST body to the write endpoint (single attempt).

        Raises:
            DeliveryError: transport failure or non-2xx response.
        """

        session = self._session or requests.Session()
        try:
            resp = session.post(
                self.url,
                params=self.params,
                data=body.encode("utf-8"),
                auth=self.auth,
                headers={"Content-Type": "text/plain; charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"InfluxDB write to {self.url} failed: {exc}") from exc
        finally:
            if self._session is None:
                session.close()

        status = int(getattr(resp, "status_code", 0) or 0)
        if status < 200 or status >= 300:
            text = getattr(resp, "text", "")
            raise DeliveryError(
                f"InfluxDB write to {self.url} returned HTTP {status}: {text}"
            )
        logger.info("Wrote %d bytes of metrics to %s", len(body), self.url)

    def deliver(self, body: str, *, dryrun: bool = False, out: TextIO | None = None) -> None:
        """Brief: Write body, or print the equivalent request when dryrun is set."""

        if not dryrun:
            self.write(body)
            return
        stream = out or sys.stdout
        stream.write(
            "DRYRUN! No actual call to InfluxDB has been made. "
            "The following call would have been made without --dryrun\n"
        )
        stream.write(self.render(body))
        if not body.endswith("\n"):
            stream.write("\n")
