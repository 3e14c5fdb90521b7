"""
Normalización de respuestas WSFEv1.

AFIP codifica errores/observaciones con formas distintas según el servicio
y la versión. Antes de leerlas se detecta la forma (MessageShape) y luego se
decodifica cada caso a una lista ordenada de Observation(code, msg).
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import AfipFiscalRejectionError, AfipProtocolError
from .models import Observation, ResultCode, VoucherResult
from .utils import as_list, to_int

logger = logging.getLogger(__name__)


class MessageShape(Enum):
    """Formas observadas para Errors / Observaciones / Events"""
    ABSENT = "absent"                    # None, "" o contenedor vacío
    WRAPPED_LIST = "wrapped_list"        # {"Obs": [{Code, Msg}, ...]}
    WRAPPED_SINGLETON = "wrapped_single"  # {"Obs": {Code, Msg}}
    DIRECT_LIST = "direct_list"          # [{Code, Msg}, ...]
    FLAT_OBJECT = "flat_object"          # {Code, Msg} o {Msg}
    FLAT_STRING = "flat_string"          # "texto"


def _get(item: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in item and item[name] is not None:
            return item[name]
    return None


def detect_shape(value: Any, item_key: str) -> MessageShape:
    if value is None:
        return MessageShape.ABSENT
    if isinstance(value, str):
        return MessageShape.FLAT_STRING if value.strip() else MessageShape.ABSENT
    if isinstance(value, (list, tuple)):
        return MessageShape.DIRECT_LIST if value else MessageShape.ABSENT
    if isinstance(value, Mapping):
        if item_key in value:
            inner = value[item_key]
            if inner is None or inner == []:
                return MessageShape.ABSENT
            if isinstance(inner, (list, tuple)):
                return MessageShape.WRAPPED_LIST
            return MessageShape.WRAPPED_SINGLETON
        if _get(value, "Msg", "msg", "Code", "code") is not None:
            return MessageShape.FLAT_OBJECT
        return MessageShape.ABSENT
    return MessageShape.FLAT_STRING


def _decode_item(item: Any) -> Optional[Observation]:
    if item is None:
        return None
    if isinstance(item, Mapping):
        code = _get(item, "Code", "code")
        msg = _get(item, "Msg", "msg")
        if code is None and msg is None:
            return None
        return Observation(code=to_int(code), msg=str(msg or "").strip())
    text = str(item).strip()
    return Observation(code=0, msg=text) if text else None


def decode_messages(value: Any, item_key: str) -> List[Observation]:
    """
    Decodifica un contenedor de mensajes AFIP.

    Args:
        value: Valor de Errors / Observaciones / Events
        item_key: 'Err', 'Obs' o 'Evt'
    """
    shape = detect_shape(value, item_key)
    if shape is MessageShape.ABSENT:
        items: List[Any] = []
    elif shape in (MessageShape.WRAPPED_LIST, MessageShape.WRAPPED_SINGLETON):
        items = as_list(value[item_key])
    elif shape is MessageShape.DIRECT_LIST:
        items = list(value)
    else:
        items = [value]
    return [obs for obs in (_decode_item(item) for item in items) if obs is not None]


def header_errors(result: Any) -> List[Observation]:
    if not isinstance(result, Mapping):
        return []
    return decode_messages(result.get("Errors"), "Err")


def header_events(result: Any) -> List[Observation]:
    if not isinstance(result, Mapping):
        return []
    return decode_messages(result.get("Events"), "Evt")


def _unwrap_result(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise AfipProtocolError("Respuesta de FECAESolicitar con forma inesperada", raw=raw)
    if "FECAESolicitarResult" in raw:
        raw = raw["FECAESolicitarResult"]
        if not isinstance(raw, Mapping):
            raise AfipProtocolError("FECAESolicitarResult con forma inesperada", raw=raw)
    return dict(raw)


def _first_detail(result: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    fe_det = result.get("FeDetResp")
    if isinstance(fe_det, Mapping):
        details = as_list(fe_det.get("FECAEDetResponse"))
    else:
        details = as_list(fe_det)
    for detail in details:
        if isinstance(detail, Mapping):
            return detail
    return None


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_voucher_response(raw: Any) -> VoucherResult:
    """
    Convierte la respuesta de FECAESolicitar en un VoucherResult.

    Errores de cabecera y observaciones del detalle se unen (en ese orden).
    Resultado 'R' lanza AfipFiscalRejectionError con esa lista completa.

    Raises:
        AfipFiscalRejectionError: Si AFIP rechazó el comprobante
        AfipProtocolError: Si no hay Resultado ni errores que lo expliquen
    """
    result = _unwrap_result(raw)
    errors = header_errors(result)
    events = header_events(result)
    detail = _first_detail(result) or {}
    observations = decode_messages(detail.get("Observaciones"), "Obs")

    code = _blank_to_none(detail.get("Resultado"))
    if code is None:
        cab = result.get("FeCabResp")
        if isinstance(cab, Mapping):
            code = _blank_to_none(cab.get("Resultado"))
    if code is None:
        if not errors:
            raise AfipProtocolError("FECAESolicitar sin Resultado ni Errors", raw=result)
        code = ResultCode.REJECTED.value

    try:
        result_code = ResultCode(code.upper())
    except ValueError:
        raise AfipProtocolError(f"Resultado desconocido: {code!r}", raw=result)

    for event in events:
        logger.info(f"Evento AFIP {event.code}: {event.msg}")

    voucher_result = VoucherResult(
        result=result_code,
        cae=_blank_to_none(detail.get("CAE")),
        cae_vencimiento=_blank_to_none(detail.get("CAEFchVto")),
        numero=to_int(detail.get("CbteDesde")) or None,
        fecha=_blank_to_none(detail.get("CbteFch")),
        errors=tuple(errors),
        observations=tuple(observations),
        events=tuple(events),
    )

    if result_code is ResultCode.REJECTED:
        messages = voucher_result.messages
        summary = "; ".join(f"{o.code}: {o.msg}" for o in messages) or "sin detalle"
        logger.error(f"Comprobante rechazado por AFIP: {summary}")
        raise AfipFiscalRejectionError(f"Comprobante rechazado por AFIP: {summary}", messages, voucher_result)

    if result_code is ResultCode.PARTIALLY_APPROVED:
        logger.warning(f"Comprobante aprobado parcialmente: CAE={voucher_result.cae}")
    else:
        logger.info(f"Comprobante aprobado: CAE={voucher_result.cae} vto={voucher_result.cae_vencimiento}")
    for obs in observations:
        logger.warning(f"Observación AFIP {obs.code}: {obs.msg}")
    return voucher_result
