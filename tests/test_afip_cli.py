from pathlib import Path
import json
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tools import afip_cli
from app.afip_client.config import AfipEnvironment
from app.afip_client.exceptions import AfipFiscalRejectionError, AfipTransportError
from app.afip_client.models import Observation, ServerStatus


def test_qr_command_prints_url(capsys):
    code = afip_cli.main([
        "qr",
        "--fecha", "20251205",
        "--cuit", "20123456789",
        "--pto-vta", "1",
        "--tipo", "6",
        "--numero", "1",
        "--importe", "1210.00",
        "--doc-tipo", "96",
        "--doc-nro", "0",
        "--cae", "71234567890123",
    ])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["payload"]["fecha"] == "2025-12-05"
    assert out["url"].startswith("https://www.afip.gob.ar/fe/qr/?p=")


def test_status_command(monkeypatch, capsys):
    monkeypatch.setattr(afip_cli, "get_afip_environment", lambda env: AfipEnvironment.for_name("homologacion"))
    monkeypatch.setattr(
        afip_cli.core_issue, "server_status", lambda environment: ServerStatus("OK", "OK", "OK")
    )

    code = afip_cli.main(["status"])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["ok"] is True
    assert out["environment"] == "homologacion"


def test_rejection_exit_code(monkeypatch, tmp_path, capsys):
    voucher = tmp_path / "factura.json"
    voucher.write_text(json.dumps({"punto_venta": 1, "tipo_comprobante": 6, "imp_total": 121}))

    def reject(**kwargs):
        raise AfipFiscalRejectionError("rechazado", [Observation(10049, "Condicion IVA invalida")])

    monkeypatch.setattr(afip_cli, "get_credentials_from_env", lambda: None)
    monkeypatch.setattr(afip_cli, "get_issuer_cuit_from_env", lambda: "20123456789")
    monkeypatch.setattr(afip_cli.core_issue, "issue_invoice", reject)

    code = afip_cli.main(["--env", "homologacion", "emitir", str(voucher)])

    captured = capsys.readouterr()
    assert code == afip_cli.EXIT_REJECTED
    assert json.loads(captured.out) == [{"code": 10049, "msg": "Condicion IVA invalida"}]
    assert "RECHAZADO" in captured.err


def test_transport_error_exit_code(monkeypatch, capsys):
    def unreachable(**kwargs):
        raise AfipTransportError("Timeout en FEDummy")

    monkeypatch.setattr(afip_cli.core_issue, "server_status", unreachable)

    assert afip_cli.main(["--env", "homologacion", "status"]) == afip_cli.EXIT_RETRYABLE
