"""
WSFEv1: operaciones de Factura Electrónica.

Cada método recibe el ticket y el CUIT emisor y devuelve el resultado de
AFIP ya serializado (dict) o modelos de parámetros.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .exceptions import AfipProtocolError, AfipServiceError
from .models import (
    AccessTicket,
    CondicionIvaReceptor,
    PuntoVenta,
    ServerStatus,
    TipoComprobante,
    VoucherRequest,
)
from .response_normalizer import header_errors
from .utils import as_list, clean_tax_id, to_int

logger = logging.getLogger(__name__)

# "Sin Resultados" en consultas de parámetros
NO_RESULTS_CODE = 602


def build_auth(ticket: AccessTicket, cuit: str) -> Dict[str, Any]:
    """Cabecera Auth {Token, Sign, Cuit} de WSFEv1"""
    return {"Token": ticket.token, "Sign": ticket.sign, "Cuit": int(clean_tax_id(cuit))}


def _result_items(result: Any, list_key: str) -> List[Mapping[str, Any]]:
    if not isinstance(result, Mapping):
        return []
    result_get = result.get("ResultGet")
    if isinstance(result_get, Mapping):
        items = as_list(result_get.get(list_key))
    else:
        items = as_list(result_get)
    return [item for item in items if isinstance(item, Mapping)]


def raise_for_errors(result: Any, operation: str, ignore_codes: Iterable[int] = ()) -> None:
    """
    Lanza AfipServiceError si la respuesta trae Errors en la cabecera.

    Raises:
        AfipServiceError: Con la lista de errores y el primer código
    """
    ignored = set(ignore_codes)
    errors = [e for e in header_errors(result) if e.code not in ignored]
    if errors:
        detail = "; ".join(f"{e.code}: {e.msg}" for e in errors)
        raise AfipServiceError(f"{operation} devolvió errores: {detail}", errors)


class WsfeClient:
    """Operaciones WSFEv1 sobre un cliente SOAP"""

    def __init__(self, soap: Any):
        self.soap = soap

    def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        result = self.soap.call("wsfe", operation, **kwargs)
        if result is None:
            return {}
        if not isinstance(result, Mapping):
            raise AfipProtocolError(f"{operation} devolvió una respuesta inesperada", raw=result)
        return dict(result)

    # ----- Comprobantes -----
    def ultimo_autorizado(self, ticket: AccessTicket, cuit: str, pto_vta: int, cbte_tipo: int) -> Dict[str, Any]:
        """FECompUltimoAutorizado (sin interpretar: ver SequenceResolver)"""
        return self._call(
            "FECompUltimoAutorizado",
            Auth=build_auth(ticket, cuit),
            PtoVta=int(pto_vta),
            CbteTipo=int(cbte_tipo),
        )

    def consultar_comprobante(
        self, ticket: AccessTicket, cuit: str, pto_vta: int, cbte_tipo: int, cbte_nro: int
    ) -> Dict[str, Any]:
        """FECompConsultar: datos de un comprobante ya autorizado"""
        result = self._call(
            "FECompConsultar",
            Auth=build_auth(ticket, cuit),
            FeCompConsReq={"CbteTipo": int(cbte_tipo), "CbteNro": int(cbte_nro), "PtoVta": int(pto_vta)},
        )
        raise_for_errors(result, "FECompConsultar")
        result_get = result.get("ResultGet")
        return dict(result_get) if isinstance(result_get, Mapping) else {}

    def solicitar_cae(self, ticket: AccessTicket, cuit: str, request: VoucherRequest) -> Dict[str, Any]:
        """FECAESolicitar (la respuesta se interpreta con normalize_voucher_response)"""
        logger.info(
            f"FECAESolicitar PtoVta={request.punto_venta} CbteTipo={request.tipo_comprobante} "
            f"Nro={request.numero} Fch={request.fecha}"
        )
        return self._call("FECAESolicitar", Auth=build_auth(ticket, cuit), FeCAEReq=request.to_fecae_req())

    # ----- Parámetros -----
    def tipos_comprobante(self, ticket: AccessTicket, cuit: str) -> List[TipoComprobante]:
        result = self._call("FEParamGetTiposCbte", Auth=build_auth(ticket, cuit))
        raise_for_errors(result, "FEParamGetTiposCbte")
        return [
            TipoComprobante(
                id=to_int(item.get("Id")),
                descripcion=str(item.get("Desc") or ""),
                fch_desde=item.get("FchDesde"),
                fch_hasta=item.get("FchHasta"),
            )
            for item in _result_items(result, "CbteTipo")
        ]

    def puntos_venta(self, ticket: AccessTicket, cuit: str) -> List[PuntoVenta]:
        """FEParamGetPtosVenta; el error 602 (sin resultados) equivale a lista vacía"""
        result = self._call("FEParamGetPtosVenta", Auth=build_auth(ticket, cuit))
        raise_for_errors(result, "FEParamGetPtosVenta", ignore_codes=(NO_RESULTS_CODE,))
        return [
            PuntoVenta(
                nro=to_int(item.get("Nro")),
                emision_tipo=item.get("EmisionTipo"),
                bloqueado=str(item.get("Bloqueado") or "N").upper() == "S",
                fch_baja=None if str(item.get("FchBaja") or "NULL").upper() == "NULL" else item.get("FchBaja"),
            )
            for item in _result_items(result, "PtoVenta")
        ]

    def condiciones_iva_receptor(
        self, ticket: AccessTicket, cuit: str, clase: Optional[str] = None
    ) -> List[CondicionIvaReceptor]:
        kwargs: Dict[str, Any] = {"Auth": build_auth(ticket, cuit)}
        if clase:
            kwargs["ClaseCmp"] = clase
        result = self._call("FEParamGetCondicionIvaReceptor", **kwargs)
        raise_for_errors(result, "FEParamGetCondicionIvaReceptor")
        return [
            CondicionIvaReceptor(
                id=to_int(item.get("Id")),
                descripcion=str(item.get("Desc") or ""),
                clase=item.get("Cmp_Clase"),
            )
            for item in _result_items(result, "CondicionIvaReceptor")
        ]

    def dummy(self) -> ServerStatus:
        """FEDummy: estado de AppServer / DbServer / AuthServer"""
        result = self._call("FEDummy")
        return ServerStatus(
            app_server=result.get("AppServer"),
            db_server=result.get("DbServer"),
            auth_server=result.get("AuthServer"),
        )
