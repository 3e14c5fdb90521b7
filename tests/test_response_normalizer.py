from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.afip_client.exceptions import AfipFiscalRejectionError, AfipProtocolError
from app.afip_client.models import Observation, ResultCode
from app.afip_client.response_normalizer import (
    MessageShape,
    decode_messages,
    detect_shape,
    normalize_voucher_response,
)


def _response(resultado="A", observaciones=None, errors=None, cae="74123456789012"):
    detail = {
        "Concepto": 1,
        "DocTipo": 99,
        "DocNro": 0,
        "CbteDesde": 6,
        "CbteHasta": 6,
        "CbteFch": "20241126",
        "Resultado": resultado,
        "Observaciones": observaciones,
        "CAE": cae,
        "CAEFchVto": "20241206",
    }
    return {
        "FeCabResp": {"Cuit": 20123456789, "PtoVta": 1, "CbteTipo": 6, "Resultado": resultado},
        "FeDetResp": {"FECAEDetResponse": [detail]},
        "Errors": errors,
        "Events": None,
    }


@pytest.mark.parametrize(
    "value, shape",
    [
        (None, MessageShape.ABSENT),
        ("", MessageShape.ABSENT),
        ({"Obs": [{"Code": 10217, "Msg": "a"}]}, MessageShape.WRAPPED_LIST),
        ({"Obs": {"Code": 10217, "Msg": "a"}}, MessageShape.WRAPPED_SINGLETON),
        ([{"Code": 10217, "Msg": "a"}], MessageShape.DIRECT_LIST),
        ({"Msg": "a"}, MessageShape.FLAT_OBJECT),
        ("texto libre", MessageShape.FLAT_STRING),
    ],
)
def test_detect_shape(value, shape):
    assert detect_shape(value, "Obs") is shape


@pytest.mark.parametrize(
    "value",
    [
        {"Obs": [{"Code": 10217, "Msg": "El credito fiscal discriminado"}]},
        {"Obs": {"Code": 10217, "Msg": "El credito fiscal discriminado"}},
        [{"Code": 10217, "Msg": "El credito fiscal discriminado"}],
        {"Code": "10217", "Msg": "El credito fiscal discriminado"},
    ],
)
def test_every_structured_shape_decodes_to_the_same_pair(value):
    assert decode_messages(value, "Obs") == [Observation(10217, "El credito fiscal discriminado")]


def test_unstructured_text_defaults_code_to_zero():
    assert decode_messages("Observación sin código", "Obs") == [Observation(0, "Observación sin código")]
    assert decode_messages({"Msg": "solo mensaje"}, "Obs") == [Observation(0, "solo mensaje")]


def test_approved_result():
    result = normalize_voucher_response(_response())

    assert result.result is ResultCode.APPROVED
    assert result.approved is True
    assert result.cae == "74123456789012"
    assert result.cae_vencimiento == "20241206"
    assert result.numero == 6
    assert result.messages == []


def test_partially_approved_keeps_cae_and_observations():
    result = normalize_voucher_response({
        "FECAESolicitarResult": _response("P", observaciones={"Obs": {"Code": 10063, "Msg": "Obs parcial"}}),
    })

    assert result.result is ResultCode.PARTIALLY_APPROVED
    assert result.approved is False
    assert result.cae == "74123456789012"
    assert result.observations == (Observation(10063, "Obs parcial"),)


def test_rejection_with_header_fault_carries_exactly_that_pair():
    raw = _response("R", errors={"Err": [{"Code": 10049, "Msg": "Campo CondicionIVAReceptorId invalido"}]}, cae="")

    with pytest.raises(AfipFiscalRejectionError) as excinfo:
        normalize_voucher_response(raw)

    assert [o.to_dict() for o in excinfo.value.observations] == [
        {"code": 10049, "msg": "Campo CondicionIVAReceptorId invalido"}
    ]
    assert excinfo.value.code == "10049"
    assert excinfo.value.result.cae is None


def test_rejection_merges_header_faults_before_detail_observations():
    raw = _response(
        "R",
        errors=[{"Code": 10016, "Msg": "Numero incorrecto"}],
        observaciones="Fecha fuera de rango",
    )

    with pytest.raises(AfipFiscalRejectionError) as excinfo:
        normalize_voucher_response(raw)

    assert excinfo.value.observations == [Observation(10016, "Numero incorrecto"), Observation(0, "Fecha fuera de rango")]


def test_header_errors_without_detail_are_a_rejection():
    raw = {"FeCabResp": None, "FeDetResp": None, "Errors": {"Err": {"Code": 600, "Msg": "ValidacionDeToken"}}}

    with pytest.raises(AfipFiscalRejectionError) as excinfo:
        normalize_voucher_response(raw)
    assert excinfo.value.observations == [Observation(600, "ValidacionDeToken")]


def test_singleton_detail_response():
    raw = _response()
    raw["FeDetResp"] = {"FECAEDetResponse": raw["FeDetResp"]["FECAEDetResponse"][0]}
    assert normalize_voucher_response(raw).cae == "74123456789012"


def test_unknown_shape_is_protocol_error():
    with pytest.raises(AfipProtocolError, match="sin Resultado"):
        normalize_voucher_response({"FeDetResp": None})
    with pytest.raises(AfipProtocolError, match="forma inesperada"):
        normalize_voucher_response("<html>502 Bad Gateway</html>")
