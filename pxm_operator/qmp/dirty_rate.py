# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/qmp/dirty_rate.py
"""
Dirty-page-rate measurement over QMP.

calc-dirty-rate only starts sampling; the result is read later with
query-dirty-rate. The default wait before reading is twice the sampling time.
A "poll" policy re-queries with backoff while the guest is still being
sampled. Either way only a 'measured' status is a result; every other final
status raises MeasurementIncomplete.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core.exceptions import MeasurementIncomplete
from ..core.logger import Log
from ..core.logging_utils import log_step, safe_logger
from ..core.retry import retry_operation
from .models import DirtyRateMeasurement, DirtyRateStatus
from .session import DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_READ_TIMEOUT_S, QMPSession

WAIT_FIXED = "fixed"
WAIT_POLL = "poll"
WAIT_POLICIES = (WAIT_FIXED, WAIT_POLL)

_PENDING = (DirtyRateStatus.UNSTARTED, DirtyRateStatus.MEASURING)


@dataclass(frozen=True)
class DirtyRatePolicy:
    wait_policy: str = WAIT_FIXED
    wait_factor: float = 2.0  # fixed: sleep calc_time * wait_factor
    poll_attempts: int = 6  # poll: queries after the initial calc_time sleep
    poll_base_s: float = 0.5
    poll_max_s: float = 8.0

    def __post_init__(self) -> None:
        if self.wait_policy not in WAIT_POLICIES:
            raise ValueError(f"wait_policy must be one of {WAIT_POLICIES} (got {self.wait_policy!r})")
        if self.wait_factor < 1.0:
            raise ValueError(f"wait_factor must be >= 1.0 (got {self.wait_factor})")
        if self.poll_attempts < 1:
            raise ValueError(f"poll_attempts must be >= 1 (got {self.poll_attempts})")


class _StillMeasuring(Exception):
    def __init__(self, measurement: DirtyRateMeasurement):
        super().__init__(f"status={measurement.raw_status}")
        self.measurement = measurement


class DirtyRateWorkflow:
    def __init__(
        self,
        session: QMPSession,
        *,
        policy: Optional[DirtyRatePolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.policy = policy or DirtyRatePolicy()
        self.logger = safe_logger(logger)

    def calc_dirty_rate(self, calc_time: int, sample_pages: Optional[int] = None) -> None:
        # calc_time is forwarded unchecked; QEMU rejects out-of-range values itself.
        args: Dict[str, Any] = {"calc-time": calc_time}
        if sample_pages is not None:
            args["sample-pages"] = sample_pages
        self.session.execute("calc-dirty-rate", args)

    def query_dirty_rate(self) -> DirtyRateMeasurement:
        return DirtyRateMeasurement.from_payload(self.session.execute("query-dirty-rate"))

    def measure(self, calc_time: int, sample_pages: Optional[int] = None) -> DirtyRateMeasurement:
        """Start a measurement, wait, read it back; return it only if 'measured'."""
        with log_step(self.logger, f"Measuring dirty rate on {self.session.name} ({calc_time}s)"):
            self.calc_dirty_rate(calc_time, sample_pages)

            if self.policy.wait_policy == WAIT_POLL:
                result = self._poll(calc_time)
            else:
                time.sleep(max(0, calc_time) * self.policy.wait_factor)
                result = self.query_dirty_rate()

            if not result.measured:
                raise MeasurementIncomplete(result.raw_status)

        Log.ok(
            self.logger,
            "Dirty rate measured",
            target=self.session.name,
            rate_mbps=f"{result.dirty_rate:.2f}",
            mode=result.mode,
        )
        return result

    def _query_final(self) -> DirtyRateMeasurement:
        result = self.query_dirty_rate()
        if result.status in _PENDING:
            raise _StillMeasuring(result)
        return result

    def _poll(self, calc_time: int) -> DirtyRateMeasurement:
        time.sleep(max(0, calc_time))
        try:
            return retry_operation(
                self._query_final,
                max_attempts=self.policy.poll_attempts,
                base_backoff_s=self.policy.poll_base_s,
                max_backoff_s=self.policy.poll_max_s,
                jitter_s=0.0,
                exceptions=_StillMeasuring,
                operation_name="query-dirty-rate",
                logger=self.logger,
                log_level=logging.DEBUG,
            )
        except _StillMeasuring as e:
            raise MeasurementIncomplete(e.measurement.raw_status) from None


def measure_dirty_rate(
    host: str,
    port: int,
    calc_time: int,
    *,
    sample_pages: Optional[int] = None,
    policy: Optional[DirtyRatePolicy] = None,
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT_S,
    read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT_S,
    logger: Optional[logging.Logger] = None,
) -> DirtyRateMeasurement:
    """Open a session to host:port, run one measurement, always close the session."""
    with QMPSession.open(host, port, connect_timeout=connect_timeout, read_timeout=read_timeout, logger=logger) as session:
        return DirtyRateWorkflow(session, policy=policy, logger=logger).measure(calc_time, sample_pages)
