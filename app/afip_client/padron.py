"""
Consulta de contribuyentes en Padrón A5 (personaServiceA5.getPersona_v2).

Requiere un TA propio del servicio 'ws_sr_constancia_inscripcion'.
"""
import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional

from .exceptions import AfipProtocolError, AfipServiceError
from .models import AccessTicket, Observation, Taxpayer
from .utils import as_list, clean_tax_id, to_int
from .wsaa import ensure_ticket_valid

logger = logging.getLogger(__name__)

PADRON_SERVICE = "ws_sr_constancia_inscripcion"

IMPUESTO_IVA = 30
IMPUESTO_IVA_EXENTO = 32

CONDICIONES_IVA = {
    1: "IVA Responsable Inscripto",
    4: "IVA Sujeto Exento",
    5: "Consumidor Final",
    6: "Responsable Monotributo",
}


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _impuestos(section: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    return [i for i in as_list(section.get("impuesto")) if isinstance(i, Mapping)]


def _denominacion(generales: Mapping[str, Any]) -> str:
    razon_social = generales.get("razonSocial")
    if razon_social:
        return str(razon_social).strip()
    partes = [generales.get("apellido"), generales.get("nombre")]
    return " ".join(str(p).strip() for p in partes if p).strip()


def _domicilio(generales: Mapping[str, Any]) -> Optional[str]:
    domicilio = _mapping(generales.get("domicilioFiscal"))
    partes = [
        domicilio.get("direccion"),
        domicilio.get("localidad"),
        domicilio.get("descripcionProvincia"),
        domicilio.get("codPostal"),
    ]
    texto = ", ".join(str(p).strip() for p in partes if p)
    return texto or None


def condicion_iva_from_persona(persona: Mapping[str, Any]) -> int:
    """Monotributo > IVA inscripto > IVA exento > consumidor final"""
    if persona.get("datosMonotributo"):
        return 6
    ids = {to_int(i.get("idImpuesto")) for i in _impuestos(_mapping(persona.get("datosRegimenGeneral")))}
    if IMPUESTO_IVA in ids:
        return 1
    if IMPUESTO_IVA_EXENTO in ids:
        return 4
    return 5


def _fecha_inscripcion(persona: Mapping[str, Any]) -> Optional[str]:
    periodos = []
    for section in ("datosRegimenGeneral", "datosMonotributo"):
        for impuesto in _impuestos(_mapping(persona.get(section))):
            if impuesto.get("periodo"):
                periodos.append(str(impuesto["periodo"]))
    return min(periodos) if periodos else None


def parse_persona(raw: Any, cuit: str) -> Taxpayer:
    """
    Normaliza personaReturn de getPersona_v2.

    Raises:
        AfipServiceError: Si AFIP informa errorConstancia sin datos generales
        AfipProtocolError: Si la respuesta no tiene la forma esperada
    """
    if not isinstance(raw, Mapping):
        raise AfipProtocolError("getPersona_v2 devolvió una respuesta inesperada", raw=raw)
    persona = _mapping(raw.get("personaReturn")) or raw
    generales = _mapping(persona.get("datosGenerales"))

    error_constancia = _mapping(persona.get("errorConstancia"))
    mensajes = [Observation(code=0, msg=str(m)) for m in as_list(error_constancia.get("error")) if m]
    if not generales:
        if mensajes:
            raise AfipServiceError(f"Padrón A5 sin datos para {cuit}: {mensajes[0].msg}", mensajes)
        raise AfipProtocolError(f"Padrón A5 sin datosGenerales para {cuit}", raw=raw)
    for mensaje in mensajes:
        logger.warning(f"Padrón A5 ({cuit}): {mensaje.msg}")

    codigo = condicion_iva_from_persona(persona)
    return Taxpayer(
        cuit=str(generales.get("idPersona") or cuit),
        denominacion=_denominacion(generales),
        tipo_persona=generales.get("tipoPersona"),
        condicion_iva=CONDICIONES_IVA[codigo],
        condicion_iva_codigo=codigo,
        estado=generales.get("estadoClave"),
        domicilio=_domicilio(generales),
        fecha_inscripcion=_fecha_inscripcion(persona),
    )


class PadronClient:
    """Consulta de Padrón A5"""

    def __init__(self, soap: Any):
        self.soap = soap

    def get_persona(
        self, ticket: AccessTicket, cuit_representada: str, cuit: str, now: Optional[datetime] = None
    ) -> Taxpayer:
        ensure_ticket_valid(ticket, now)
        cuit = clean_tax_id(cuit)
        logger.info(f"Consultando Padrón A5 para CUIT {cuit}")
        raw = self.soap.call(
            "padron",
            "getPersona_v2",
            token=ticket.token,
            sign=ticket.sign,
            cuitRepresentada=int(clean_tax_id(cuit_representada)),
            idPersona=int(cuit),
        )
        return parse_persona(raw, cuit)
