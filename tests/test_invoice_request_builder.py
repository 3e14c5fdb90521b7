from pathlib import Path
import logging
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.afip_client.exceptions import AfipValidationError
from app.afip_client.invoice_builder import build_voucher_request, voucher_class
from app.afip_client.models import (
    AlicuotaIva,
    ComprobanteAsociado,
    Opcional,
    SequenceState,
    VoucherData,
)
from _afip_fakes import CUIT, NOW


def _sequence(pto_vta=1, tipo=6, last=5, date="20241126", first=False):
    return SequenceState(punto_venta=pto_vta, tipo_comprobante=tipo, last_number=last, last_date=date, first_voucher=first)


def _factura_b(**overrides):
    values = dict(
        punto_venta=1,
        tipo_comprobante=6,
        concepto=1,
        doc_tipo=99,
        doc_nro=0,
        imp_total=1210,
        imp_neto=1000,
        imp_iva=210,
    )
    values.update(overrides)
    return VoucherData(**values)


def test_auto_number_and_date_clamped_to_last_voucher():
    request = build_voucher_request(_factura_b(numero=0, fecha="20241125"), _sequence(), CUIT)

    assert request.numero == 6
    assert request.detalle["CbteHasta"] == 6
    assert request.fecha == "20241126"


def test_date_after_floor_passes_through():
    request = build_voucher_request(_factura_b(fecha="2024-11-28"), _sequence(), CUIT)
    assert request.fecha == "20241128"


def test_missing_date_on_first_voucher_is_today():
    request = build_voucher_request(_factura_b(fecha=None), _sequence(first=True, last=0, date="20241127"), CUIT, NOW)
    assert request.fecha == "20241127"
    assert request.numero == 1


def test_missing_date_is_today_not_the_last_voucher_date():
    request = build_voucher_request(_factura_b(fecha=None), _sequence(last=5, date="20240101"), CUIT, NOW)
    assert request.fecha == "20241127"
    assert request.numero == 6


def test_missing_date_never_goes_below_last_voucher_date():
    request = build_voucher_request(_factura_b(fecha=None), _sequence(last=5, date="20241130"), CUIT, NOW)
    assert request.fecha == "20241130"


def test_mismatched_caller_number_is_corrected_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="app.afip_client.invoice_builder"):
        request = build_voucher_request(_factura_b(numero=99), _sequence(), CUIT)

    assert request.numero == 6
    assert "no coincide" in caplog.text


def test_final_consumer_forces_document_number_zero():
    request = build_voucher_request(_factura_b(doc_tipo=99, doc_nro="20-12345678-9"), _sequence(), CUIT)
    assert request.detalle["DocNro"] == 0


def test_cuit_document_is_parsed():
    request = build_voucher_request(
        _factura_b(doc_tipo=80, doc_nro="30-71234567-1", condicion_iva_receptor=4), _sequence(), CUIT
    )
    assert request.detalle["DocNro"] == 30712345671


@pytest.mark.parametrize("doc_nro", ["", "abc", 0, "000", None])
def test_invalid_document_number_is_validation_error(doc_nro):
    with pytest.raises(AfipValidationError, match="documento"):
        build_voucher_request(_factura_b(doc_tipo=96, doc_nro=doc_nro), _sequence(), CUIT)


def test_default_vat_breakdown_is_21_percent():
    request = build_voucher_request(_factura_b(), _sequence(), CUIT)
    assert request.detalle["Iva"] == {"AlicIva": [{"Id": 5, "BaseImp": 1000.0, "Importe": 210.0}]}


def test_explicit_vat_rates_pass_through():
    data = _factura_b(
        imp_total=1315,
        imp_neto=1100,
        imp_iva=215,
        alicuotas_iva=[AlicuotaIva(id=5, base_imp=1000, importe=210), AlicuotaIva(id=8, base_imp=100, importe=5)],
    )
    request = build_voucher_request(data, _sequence(), CUIT)
    assert [a["Id"] for a in request.detalle["Iva"]["AlicIva"]] == [5, 8]


def test_class_c_has_no_vat_breakdown_and_final_consumer_default():
    data = VoucherData(punto_venta=3, tipo_comprobante=11, imp_total=500, imp_neto=500)
    request = build_voucher_request(data, _sequence(pto_vta=3, tipo=11), CUIT)

    assert "Iva" not in request.detalle
    assert request.detalle["CondicionIVAReceptorId"] == 5


def test_class_a_defaults_to_responsable_inscripto():
    data = _factura_b(tipo_comprobante=1, doc_tipo=80, doc_nro="30712345671")
    request = build_voucher_request(data, _sequence(tipo=1), CUIT)
    assert request.detalle["CondicionIVAReceptorId"] == 1


def test_unusual_vat_condition_is_kept_and_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="app.afip_client.invoice_builder"):
        request = build_voucher_request(_factura_b(condicion_iva_receptor=1), _sequence(), CUIT)

    assert request.detalle["CondicionIVAReceptorId"] == 1
    assert "Condición IVA receptor 1" in caplog.text


def test_service_dates_only_for_services_and_default_to_voucher_date():
    products = build_voucher_request(_factura_b(concepto=1, fch_serv_desde="20241101"), _sequence(), CUIT)
    services = build_voucher_request(
        _factura_b(concepto=2, fecha="20241127", fch_serv_desde="20241101"), _sequence(), CUIT
    )

    assert "FchServDesde" not in products.detalle
    assert services.detalle["FchServDesde"] == "20241101"
    assert services.detalle["FchServHasta"] == "20241127"
    assert services.detalle["FchVtoPago"] == "20241127"


def test_credit_note_with_associated_voucher():
    data = _factura_b(
        tipo_comprobante=8,
        comprobantes_asociados=[ComprobanteAsociado(tipo=6, pto_vta=1, nro=5, cuit=CUIT, cbte_fch="20241126")],
    )
    request = build_voucher_request(data, _sequence(tipo=8), CUIT)
    assert request.detalle["CbtesAsoc"] == {
        "CbteAsoc": [{"Tipo": 6, "PtoVta": 1, "Nro": 5, "Cuit": CUIT, "CbteFch": "20241126"}]
    }


def test_credit_note_without_associated_voucher_only_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="app.afip_client.invoice_builder"):
        request = build_voucher_request(_factura_b(tipo_comprobante=8), _sequence(tipo=8), CUIT)
    assert "CbtesAsoc" not in request.detalle
    assert "sin comprobantes asociados" in caplog.text


def test_fce_optional_fields():
    data = _factura_b(
        tipo_comprobante=206,
        doc_tipo=80,
        doc_nro="30712345671",
        concepto=2,
        opcionales=[Opcional(id="2101", valor="0110012345678901234567")],
    )
    request = build_voucher_request(data, _sequence(tipo=206), CUIT)
    assert request.detalle["Opcionales"] == {"Opcional": [{"Id": "2101", "Valor": "0110012345678901234567"}]}


def test_fecae_req_shape():
    request = build_voucher_request(_factura_b(), _sequence(), "20-12345678-9")
    req = request.to_fecae_req()

    assert request.cuit_emisor == CUIT
    assert req["FeCabReq"] == {"CantReg": 1, "PtoVta": 1, "CbteTipo": 6}
    assert req["FeDetReq"]["FECAEDetRequest"][0]["CbteDesde"] == 6
    assert req["FeDetReq"]["FECAEDetRequest"][0]["MonId"] == "PES"


def test_sequence_for_another_pair_is_rejected():
    with pytest.raises(AfipValidationError, match="no corresponde"):
        build_voucher_request(_factura_b(), _sequence(tipo=1), CUIT)


def test_unknown_voucher_type():
    with pytest.raises(AfipValidationError, match="no soportado"):
        voucher_class(999)


def test_float_document_number_from_json_keeps_its_digits():
    request = build_voucher_request(_factura_b(doc_tipo=96, doc_nro=12345678.0), _sequence(), CUIT)
    assert request.detalle["DocNro"] == 12345678


def test_fractional_document_number_is_validation_error():
    with pytest.raises(AfipValidationError, match="documento"):
        build_voucher_request(_factura_b(doc_tipo=96, doc_nro=1234567.5), _sequence(), CUIT)


@pytest.mark.parametrize("tipo,expected", [(6, 5), (1, 1), (11, 5)])
def test_zero_vat_condition_falls_back_to_class_default(tipo, expected):
    data = _factura_b(tipo_comprobante=tipo, doc_tipo=80, doc_nro="30712345671", condicion_iva_receptor=0)
    request = build_voucher_request(data, _sequence(tipo=tipo), CUIT)
    assert request.detalle["CondicionIVAReceptorId"] == expected
