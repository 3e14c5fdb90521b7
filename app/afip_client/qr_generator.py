"""
Generador de Código QR para comprobantes AFIP (RG 4291)

1. Armar el JSON con los campos en orden fijo (ver, fecha, cuit, ptoVta,
   tipoCmp, nroCmp, importe, moneda, ctz, tipoDocRec, nroDocRec, tipoCodAut, codAut)
2. Serializar compacto (sin espacios, números enteros sin decimales)
3. Codificar en base64
4. URL final: https://www.afip.gob.ar/fe/qr/?p=<base64>

Función pura: mismos datos, mismo QR.
"""
import base64
import json
import logging
from dataclasses import replace
from typing import Any, Dict, Union

from .config import QR_URL_BASE
from .exceptions import AfipQRError
from .models import QrPayload, VoucherRequest, VoucherResult
from .utils import clean_tax_id, hyphenate_date, json_number

logger = logging.getLogger(__name__)

QR_VERSION = 1
TIPO_COD_AUT_CAE = "E"


def _to_int(value: Any, field: str) -> int:
    try:
        return int(clean_tax_id(value))
    except (TypeError, ValueError):
        raise AfipQRError(f"{field} no numérico para QR: {value!r}")


def canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


class QRGenerator:
    """Generador de URL QR para comprobantes autorizados"""

    def __init__(self, base_url: str = QR_URL_BASE):
        self.base_url = base_url

    def generate(
        self,
        fecha: str,
        cuit: Union[str, int],
        pto_vta: int,
        tipo_cmp: int,
        nro_cmp: int,
        importe: Any,
        moneda: str,
        ctz: Any,
        tipo_doc_rec: int,
        nro_doc_rec: Union[str, int],
        cod_aut: Union[str, int],
    ) -> QrPayload:
        """
        Genera el payload QR.

        Args:
            fecha: Fecha del comprobante (YYYYMMDD o YYYY-MM-DD)
            cuit: CUIT emisor
            pto_vta: Punto de venta
            tipo_cmp: Tipo de comprobante
            nro_cmp: Número de comprobante
            importe: Importe total
            moneda: Código de moneda (ej: 'PES')
            ctz: Cotización
            tipo_doc_rec: Tipo de documento del receptor
            nro_doc_rec: Número de documento del receptor
            cod_aut: CAE

        Returns:
            QrPayload con los campos, el base64 y la URL
        """
        payload = QrPayload(
            ver=QR_VERSION,
            fecha=hyphenate_date(str(fecha)),
            cuit=_to_int(cuit, "cuit"),
            pto_vta=_to_int(pto_vta, "ptoVta"),
            tipo_cmp=_to_int(tipo_cmp, "tipoCmp"),
            nro_cmp=_to_int(nro_cmp, "nroCmp"),
            importe=json_number(importe),
            moneda=str(moneda),
            ctz=json_number(ctz),
            tipo_doc_rec=_to_int(tipo_doc_rec, "tipoDocRec"),
            nro_doc_rec=_to_int(nro_doc_rec, "nroDocRec"),
            tipo_cod_aut=TIPO_COD_AUT_CAE,
            cod_aut=_to_int(cod_aut, "codAut"),
            encoded="",
            url="",
        )
        encoded = base64.b64encode(canonical_json(payload.to_dict()).encode("utf-8")).decode("ascii")
        return replace(payload, encoded=encoded, url=self.base_url + encoded)


def build_qr(request: VoucherRequest, result: VoucherResult, base_url: str = QR_URL_BASE) -> QrPayload:
    """
    QR de un comprobante aprobado.

    Raises:
        AfipQRError: Si el resultado no es Aprobado o falta el CAE
    """
    if not result.approved:
        raise AfipQRError(f"No se genera QR para comprobantes con resultado {result.result.value}")
    if not result.cae:
        raise AfipQRError("Comprobante aprobado sin CAE")

    detalle = request.detalle
    qr = QRGenerator(base_url).generate(
        fecha=result.fecha or request.fecha,
        cuit=request.cuit_emisor,
        pto_vta=request.punto_venta,
        tipo_cmp=request.tipo_comprobante,
        nro_cmp=result.numero or request.numero,
        importe=detalle["ImpTotal"],
        moneda=detalle.get("MonId", "PES"),
        ctz=detalle.get("MonCotiz", 1),
        tipo_doc_rec=detalle["DocTipo"],
        nro_doc_rec=detalle["DocNro"],
        cod_aut=result.cae,
    )
    logger.info(f"QR generado para comprobante {qr.pto_vta}-{qr.nro_cmp} (CAE {qr.cod_aut})")
    return qr
