# SPDX-License-Identifier: LGPL-3.0-or-later
# pxm_operator/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are 0..255.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "secret",
    "token",
    "apikey",
    "api_key",
    "auth",
    "cookie",
    "bearer",
    "private",
)

REDACTED = "***REDACTED***"


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def redact_secrets(ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if _is_secret_key(str(k)) else v) for k, v in ctx.items()}


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, redaction, single-line.
    safe = redact_secrets(ctx)
    return ", ".join(f"{k}={safe[k]!r}" for k in sorted(safe.keys(), key=str))


@dataclass(eq=False)
class PxmOperatorError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - redacted context for anything that looks like a credential
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "PxmOperatorError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": redact_secrets(self.context or {}),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(PxmOperatorError):
    """
    User-facing fatal error (exit code is honored by the CLI entry point).
    """
    pass


class ProxmoxAPIError(PxmOperatorError):
    """
    Management API request failed (transport, HTTP status or body decoding).
    """

    def __init__(self, msg: str, *, status: Optional[int] = None, cause: Optional[BaseException] = None, code: int = 30):
        super().__init__(code=code, msg=msg, cause=cause, context={"status": status} if status is not None else None)
        self.status = status


class MigrationRejected(PxmOperatorError):
    """
    The start-migration call returned a non-success status.
    The remote body is kept verbatim in `body` and rendered unchanged by `str()`.
    """

    def __init__(self, status: int, body: str, *, vmid: Optional[int] = None, target: Optional[str] = None):
        super().__init__(
            code=31,
            msg=f"migration failed: status {status}",
            context={"vmid": vmid, "target": target},
        )
        self.status = status
        self.body = body

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        # Body is rendered as received; no line folding or truncation.
        parts = [f"{self.msg}, response: {self.body}"]
        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")
        return " ".join(parts)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d = super().to_dict(include_cause=include_cause)
        d["status"] = self.status
        d["body"] = self.body
        return d


class QMPConnectionError(PxmOperatorError):
    """
    QMP transport could not be established, broke, or the handshake failed.
    """

    def __init__(self, msg: str, *, cause: Optional[BaseException] = None, code: int = 40):
        super().__init__(code=code, msg=msg, cause=cause)


class QMPProtocolError(PxmOperatorError):
    """
    A QMP reply carried an error object; class and description are verbatim.
    """

    def __init__(self, error_class: str, desc: str, *, command: Optional[str] = None):
        prefix = f"{command} error" if command else "QMP error"
        super().__init__(code=41, msg=f"{prefix}: {error_class} - {desc}", context={"command": command})
        self.error_class = error_class
        self.desc = desc
        self.command = command


class MeasurementIncomplete(PxmOperatorError):
    """
    Dirty-rate query returned a status other than 'measured'.
    """

    def __init__(self, status: str):
        super().__init__(code=42, msg=f"measurement not completed: status={status}")
        self.status = status


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, PxmOperatorError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
