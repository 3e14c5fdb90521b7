"""
Armado de la solicitud FECAESolicitar.

Reglas aplicadas sobre los datos del llamador:
- El número siempre es el resuelto (último + 1). Un número distinto pedido
  por el llamador se corrige y se loguea como warning.
- Una fecha anterior a la del último comprobante se lleva a esa fecha.
- Doc tipo 99 (consumidor final) fuerza DocNro = 0; otro tipo exige número > 0.
- Sin alícuotas explícitas se arma IVA 21% para clases A, B y M.
- Condición IVA del receptor por defecto según la clase; una condición fuera
  del conjunto permitido solo se loguea.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .exceptions import AfipValidationError
from .models import SequenceState, VoucherData, VoucherRequest
from .utils import amount, clean_tax_id, normalize_date8, today_yyyymmdd

logger = logging.getLogger(__name__)

# Tipos de comprobante por clase
TIPOS_POR_CLASE = {
    "A": (1, 2, 3, 4, 5, 201, 202, 203),
    "B": (6, 7, 8, 9, 10, 206, 207, 208),
    "C": (11, 12, 13, 15, 211, 212, 213),
    "M": (51, 52, 53, 54),
}
VOUCHER_CLASSES: Dict[int, str] = {
    tipo: clase for clase, tipos in TIPOS_POR_CLASE.items() for tipo in tipos
}

FACTURA_A, FACTURA_B, FACTURA_C = 1, 6, 11
NOTA_CREDITO_A, NOTA_CREDITO_B, NOTA_CREDITO_C = 3, 8, 13
NOTA_DEBITO_A, NOTA_DEBITO_B, NOTA_DEBITO_C = 2, 7, 12

CREDIT_DEBIT_NOTES = frozenset({2, 3, 7, 8, 12, 13, 52, 53, 202, 203, 207, 208, 212, 213})
FCE_TYPES = frozenset({201, 202, 203, 206, 207, 208, 211, 212, 213})
FCE_INVOICES = frozenset({201, 206, 211})
VAT_DETAIL_CLASSES = frozenset({"A", "B", "M"})

DOC_CUIT = 80
DOC_CUIL = 86
DOC_PASAPORTE = 94
DOC_DNI = 96
DOC_CONSUMIDOR_FINAL = 99

CONCEPTO_PRODUCTOS = 1
CONCEPTO_SERVICIOS = 2
CONCEPTO_PRODUCTOS_Y_SERVICIOS = 3
CONCEPTOS_CON_SERVICIOS = frozenset({CONCEPTO_SERVICIOS, CONCEPTO_PRODUCTOS_Y_SERVICIOS})

IVA_21_ID = 5
FCE_CBU_OPCIONAL_ID = "2101"

CONDICION_IVA_RESPONSABLE_INSCRIPTO = 1
CONDICION_IVA_CONSUMIDOR_FINAL = 5

DEFAULT_CONDICION_IVA = {
    "A": CONDICION_IVA_RESPONSABLE_INSCRIPTO,
    "M": CONDICION_IVA_RESPONSABLE_INSCRIPTO,
    "B": CONDICION_IVA_CONSUMIDOR_FINAL,
    "C": CONDICION_IVA_CONSUMIDOR_FINAL,
}

ALLOWED_CONDICION_IVA = {
    "A": frozenset({1, 6, 13, 16}),
    "M": frozenset({1, 6, 13, 16}),
    "B": frozenset({4, 5, 7, 8, 9, 10, 15}),
    "C": frozenset({1, 4, 5, 6, 7, 8, 9, 10, 13, 15, 16}),
}


def voucher_class(cbte_tipo: int) -> str:
    try:
        return VOUCHER_CLASSES[int(cbte_tipo)]
    except (KeyError, TypeError, ValueError):
        raise AfipValidationError(f"Tipo de comprobante no soportado: {cbte_tipo!r}")


def resolve_doc_nro(doc_tipo: int, doc_nro: Union[str, int, None]) -> int:
    """Consumidor final -> 0; cualquier otro tipo exige un número entero > 0"""
    if int(doc_tipo) == DOC_CONSUMIDOR_FINAL:
        return 0
    try:
        number = int(clean_tax_id(doc_nro if doc_nro is not None else ""))
    except (ValueError, OverflowError):
        raise AfipValidationError(f"Número de documento inválido para DocTipo {doc_tipo}: {doc_nro!r}")
    if number <= 0:
        raise AfipValidationError(f"Número de documento inválido para DocTipo {doc_tipo}: {doc_nro!r}")
    return number


def reconcile_number(requested: Optional[int], sequence: SequenceState) -> int:
    """El número resuelto siempre gana; el pedido del llamador es solo indicativo"""
    next_number = sequence.next_number
    if requested and int(requested) > 0 and int(requested) != next_number:
        logger.warning(
            f"Número de comprobante {requested} no coincide con el próximo autorizado "
            f"({next_number}) para PtoVta={sequence.punto_venta} CbteTipo={sequence.tipo_comprobante}; "
            f"se usa {next_number}"
        )
    return next_number


def reconcile_date(requested: Optional[str], sequence: SequenceState, now: Optional[datetime] = None) -> str:
    """Fecha del comprobante >= fecha del último autorizado; sin fecha se usa hoy"""
    floor = sequence.date_floor
    fecha = normalize_date8(requested, "CbteFch")
    if fecha is None:
        return max(today_yyyymmdd(now), floor)
    if fecha < floor:
        logger.warning(f"Fecha {fecha} anterior al último comprobante ({floor}); se ajusta a {floor}")
        return floor
    return fecha


def resolve_condicion_iva(clase: str, requested: Optional[int]) -> int:
    if not requested:
        return DEFAULT_CONDICION_IVA[clase]
    requested = int(requested)
    if requested not in ALLOWED_CONDICION_IVA[clase]:
        logger.warning(
            f"Condición IVA receptor {requested} no habitual para comprobantes clase {clase} "
            f"(permitidas: {sorted(ALLOWED_CONDICION_IVA[clase])}); AFIP decide"
        )
    return requested


def build_iva(data: VoucherData, clase: str, imp_neto: float, imp_iva: float) -> Optional[List[Dict[str, Any]]]:
    if data.alicuotas_iva:
        return [alicuota.to_afip() for alicuota in data.alicuotas_iva]
    if clase in VAT_DETAIL_CLASSES and imp_iva:
        return [{"Id": IVA_21_ID, "BaseImp": imp_neto, "Importe": imp_iva}]
    return None


def _check_total(detalle: Dict[str, Any]) -> None:
    parts = ("ImpTotConc", "ImpNeto", "ImpOpEx", "ImpTrib", "ImpIVA")
    expected = round(sum(detalle[p] for p in parts), 2)
    if abs(expected - detalle["ImpTotal"]) > 0.01:
        logger.warning(f"ImpTotal {detalle['ImpTotal']} no coincide con la suma de importes ({expected})")


def build_voucher_request(
    data: VoucherData, sequence: SequenceState, cuit: str, now: Optional[datetime] = None
) -> VoucherRequest:
    """
    Arma el VoucherRequest a partir de los datos del llamador y la secuencia.

    Args:
        data: Datos del comprobante
        sequence: Resultado de SequenceResolver.resolve_next para el mismo par
        cuit: CUIT emisor
        now: Referencia para la fecha por defecto (hoy en Argentina)

    Raises:
        AfipValidationError: Documento, concepto, tipo o fecha inválidos
    """
    pto_vta, cbte_tipo = int(data.punto_venta), int(data.tipo_comprobante)
    if (pto_vta, cbte_tipo) != (sequence.punto_venta, sequence.tipo_comprobante):
        raise AfipValidationError(
            f"La secuencia resuelta ({sequence.punto_venta}/{sequence.tipo_comprobante}) "
            f"no corresponde al comprobante ({pto_vta}/{cbte_tipo})"
        )
    clase = voucher_class(cbte_tipo)

    concepto = int(data.concepto)
    if concepto not in (CONCEPTO_PRODUCTOS, CONCEPTO_SERVICIOS, CONCEPTO_PRODUCTOS_Y_SERVICIOS):
        raise AfipValidationError(f"Concepto inválido: {data.concepto!r} (1, 2 o 3)")

    numero = reconcile_number(data.numero, sequence)
    fecha = reconcile_date(data.fecha, sequence, now)
    imp_neto = amount(data.imp_neto, "ImpNeto")
    imp_iva = amount(data.imp_iva, "ImpIVA")

    detalle: Dict[str, Any] = {
        "Concepto": concepto,
        "DocTipo": int(data.doc_tipo),
        "DocNro": resolve_doc_nro(data.doc_tipo, data.doc_nro),
        "CbteDesde": numero,
        "CbteHasta": numero,
        "CbteFch": fecha,
        "ImpTotal": amount(data.imp_total, "ImpTotal"),
        "ImpTotConc": amount(data.imp_tot_conc, "ImpTotConc"),
        "ImpNeto": imp_neto,
        "ImpOpEx": amount(data.imp_op_ex, "ImpOpEx"),
        "ImpTrib": amount(data.imp_trib, "ImpTrib"),
        "ImpIVA": imp_iva,
        "MonId": data.moneda_id or "PES",
        "MonCotiz": float(data.moneda_cotiz or 1),
        "CondicionIVAReceptorId": resolve_condicion_iva(clase, data.condicion_iva_receptor),
    }
    _check_total(detalle)

    if concepto in CONCEPTOS_CON_SERVICIOS:
        detalle["FchServDesde"] = normalize_date8(data.fch_serv_desde, "FchServDesde") or fecha
        detalle["FchServHasta"] = normalize_date8(data.fch_serv_hasta, "FchServHasta") or fecha
        detalle["FchVtoPago"] = normalize_date8(data.fch_vto_pago, "FchVtoPago") or fecha
    elif data.fch_serv_desde or data.fch_serv_hasta or data.fch_vto_pago:
        logger.debug("Fechas de servicio ignoradas: concepto productos")

    if data.comprobantes_asociados:
        detalle["CbtesAsoc"] = {"CbteAsoc": [c.to_afip() for c in data.comprobantes_asociados]}
    elif cbte_tipo in CREDIT_DEBIT_NOTES:
        logger.warning(f"Nota de crédito/débito tipo {cbte_tipo} sin comprobantes asociados; AFIP puede rechazarla")

    if data.tributos:
        detalle["Tributos"] = {"Tributo": [t.to_afip() for t in data.tributos]}

    iva = build_iva(data, clase, imp_neto, imp_iva)
    if iva:
        detalle["Iva"] = {"AlicIva": iva}
    elif clase == "C" and imp_iva:
        logger.warning(f"Comprobante clase C con ImpIVA={imp_iva}; AFIP exige 0")

    if data.opcionales:
        detalle["Opcionales"] = {"Opcional": [o.to_afip() for o in data.opcionales]}
    if cbte_tipo in FCE_INVOICES and not any(
        str(o.id) == FCE_CBU_OPCIONAL_ID for o in (data.opcionales or [])
    ):
        logger.warning(f"Factura de crédito electrónica tipo {cbte_tipo} sin CBU (opcional {FCE_CBU_OPCIONAL_ID})")

    return VoucherRequest(
        punto_venta=pto_vta,
        tipo_comprobante=cbte_tipo,
        cuit_emisor=clean_tax_id(cuit),
        detalle=detalle,
    )
