# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the exception hierarchy and secret redaction."""
from __future__ import annotations

import pytest

from pxm_operator.core.exceptions import (
    REDACTED,
    Fatal,
    MeasurementIncomplete,
    MigrationRejected,
    ProxmoxAPIError,
    PxmOperatorError,
    QMPConnectionError,
    QMPProtocolError,
    format_exception_for_cli,
    redact_secrets,
    wrap_fatal,
)


@pytest.mark.unit
class TestExceptionHierarchy:
    def test_base_exception_creation(self):
        err = PxmOperatorError(code=1, msg="Test error")

        assert err.code == 1
        assert err.msg == "Test error"
        assert err.cause is None
        assert err.context == {}
        assert str(err) == "Test error"

    def test_exit_code_is_clamped(self):
        assert PxmOperatorError(code=300, msg="x").code == 255
        assert PxmOperatorError(code=-4, msg="x").code == 1
        assert PxmOperatorError(code="nope", msg="x").code == 1

    def test_message_is_single_line(self):
        err = Fatal(2, "first\nsecond\r\nthird")
        assert err.msg == "first second third"

    def test_all_errors_share_the_base(self):
        for err in (
            Fatal(2, "bad flag"),
            ProxmoxAPIError("boom", status=503),
            MigrationRejected(500, "locked"),
            QMPConnectionError("refused"),
            QMPProtocolError("GenericError", "nope", command="calc-dirty-rate"),
            MeasurementIncomplete("measuring"),
        ):
            assert isinstance(err, PxmOperatorError)
            assert isinstance(err, Exception)

    def test_with_context_chains(self):
        err = PxmOperatorError(code=1, msg="Error").with_context(vmid=100, node="pve1")
        assert err.context == {"vmid": 100, "node": "pve1"}

    def test_wrap_fatal_keeps_cause(self):
        cause = OSError("disk gone")
        err = wrap_fatal("cannot read config", cause, code=2, path="/etc/x.yaml")
        assert isinstance(err, Fatal)
        assert err.cause is cause
        assert err.context == {"path": "/etc/x.yaml"}


@pytest.mark.unit
class TestDomainErrors:
    def test_migration_rejected_keeps_body_verbatim(self):
        body = '{"errors":{"vmid":"VM is locked (migrate)"}}\n'
        err = MigrationRejected(500, body, vmid=100, target="pve2")

        assert err.status == 500
        assert err.body == body
        assert str(err) == "migration failed: status 500, response: " + body
        assert err.context == {"vmid": 100, "target": "pve2"}

    def test_migration_rejected_multiline_body_in_cli_output(self):
        body = "can't migrate VM which uses local devices: hostpci0\nmigration aborted"
        err = MigrationRejected(500, body)

        assert body in str(err)
        assert body in format_exception_for_cli(err, verbose=2)

    def test_migration_rejected_long_body_not_truncated(self):
        body = "x" * 700 + "locked"
        err = MigrationRejected(500, body)

        assert str(err).endswith(body)
        assert err.to_dict()["body"] == body

    def test_qmp_protocol_error_carries_class_and_desc(self):
        err = QMPProtocolError("GenericError", "Dirty rate measurement is already in progress", command="calc-dirty-rate")

        assert err.error_class == "GenericError"
        assert err.desc == "Dirty rate measurement is already in progress"
        assert str(err) == "calc-dirty-rate error: GenericError - Dirty rate measurement is already in progress"

    def test_qmp_protocol_error_without_command(self):
        assert str(QMPProtocolError("CommandNotFound", "nope")) == "QMP error: CommandNotFound - nope"

    def test_measurement_incomplete_names_status(self):
        err = MeasurementIncomplete("measuring")
        assert err.status == "measuring"
        assert str(err) == "measurement not completed: status=measuring"

    def test_proxmox_api_error_status(self):
        err = ProxmoxAPIError("GET /nodes: status 401", status=401)
        assert err.status == 401
        assert err.context == {"status": 401}
        assert ProxmoxAPIError("transport").context == {}


@pytest.mark.security
class TestSecretRedaction:
    def test_token_redacted_in_dict(self):
        err = PxmOperatorError(msg="x", context={"proxmox_token": "root@pam!ops=abc", "node": "pve1"})
        d = err.to_dict()
        assert d["context"]["proxmox_token"] == REDACTED
        assert d["context"]["node"] == "pve1"

    def test_redact_secrets_is_key_based(self):
        out = redact_secrets({"password": "p", "Authorization": "PVEAPIToken=x", "url": "https://pve"})
        assert out == {"password": REDACTED, "Authorization": REDACTED, "url": "https://pve"}

    def test_context_in_user_message_is_redacted(self):
        err = Fatal(2, "auth failed", context={"api_token": "s3cret"})
        text = err.user_message(include_context=True)
        assert "s3cret" not in text
        assert REDACTED in text


@pytest.mark.unit
class TestFormatExceptionForCli:
    def test_levels(self):
        err = Fatal(2, "bad", cause=ValueError("inner"), context={"k": 1})

        assert format_exception_for_cli(err) == "bad"
        assert format_exception_for_cli(err, verbose=1) == "bad [k=1]"
        assert format_exception_for_cli(err, verbose=2) == "bad [k=1] (cause: ValueError: inner)"

    def test_foreign_exception(self):
        assert format_exception_for_cli(RuntimeError("x")) == "x"
        assert format_exception_for_cli(RuntimeError("x"), verbose=2) == "RuntimeError: x"
        assert format_exception_for_cli(RuntimeError()) == "RuntimeError"
