"""
Modelos de datos para AFIP
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .utils import AFIP_TZ


def parse_afip_datetime(value: str) -> datetime:
    """
    Parsea un timestamp ISO de AFIP ('2024-11-26T10:00:00.123-03:00').

    Si viene sin zona horaria se asume hora de Argentina.
    """
    text = (value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=AFIP_TZ)
    return parsed


@dataclass(frozen=True)
class AccessRequest:
    """TRA (Ticket de Requerimiento de Acceso)"""
    service: str
    unique_id: int
    generation_time: datetime
    expiration_time: datetime


@dataclass(frozen=True)
class AccessTicket:
    """TA (Ticket de Acceso) devuelto por WSAA"""
    token: str
    sign: str
    generation_time: str
    expiration_time: str
    service: Optional[str] = None

    @property
    def expires_at(self) -> datetime:
        return parse_afip_datetime(self.expiration_time)

    def __repr__(self) -> str:
        return (
            f"AccessTicket(service={self.service!r}, generation_time={self.generation_time!r}, "
            f"expiration_time={self.expiration_time!r})"
        )


@dataclass(frozen=True)
class SequenceState:
    """Último comprobante autorizado para (punto de venta, tipo de comprobante)"""
    punto_venta: int
    tipo_comprobante: int
    last_number: int
    last_date: str
    first_voucher: bool = False

    @property
    def next_number(self) -> int:
        return self.last_number + 1

    @property
    def date_floor(self) -> str:
        return self.last_date


@dataclass(frozen=True)
class Observation:
    """Par {código, mensaje} de AFIP (Err, Obs o Evt). Código 0 = texto sin estructura"""
    code: int
    msg: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "msg": self.msg}


class ResultCode(str, Enum):
    APPROVED = "A"
    PARTIALLY_APPROVED = "P"
    REJECTED = "R"


@dataclass
class AlicuotaIva:
    id: int
    base_imp: float
    importe: float

    def to_afip(self) -> Dict[str, Any]:
        return {"Id": int(self.id), "BaseImp": self.base_imp, "Importe": self.importe}


@dataclass
class ComprobanteAsociado:
    tipo: int
    pto_vta: int
    nro: int
    cuit: Optional[str] = None
    cbte_fch: Optional[str] = None

    def to_afip(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"Tipo": int(self.tipo), "PtoVta": int(self.pto_vta), "Nro": int(self.nro)}
        if self.cuit:
            data["Cuit"] = str(self.cuit)
        if self.cbte_fch:
            data["CbteFch"] = str(self.cbte_fch)
        return data


@dataclass
class Tributo:
    id: int
    desc: str
    base_imp: float
    alic: float
    importe: float

    def to_afip(self) -> Dict[str, Any]:
        return {
            "Id": int(self.id),
            "Desc": self.desc,
            "BaseImp": self.base_imp,
            "Alic": self.alic,
            "Importe": self.importe,
        }


@dataclass
class Opcional:
    """Campo opcional (ej: CBU '2101' y alias '2102' para FCE)"""
    id: str
    valor: str

    def to_afip(self) -> Dict[str, Any]:
        return {"Id": str(self.id), "Valor": str(self.valor)}


@dataclass
class VoucherData:
    """Datos del comprobante tal como los entrega el llamador"""
    punto_venta: int
    tipo_comprobante: int
    concepto: int = 1
    doc_tipo: int = 99
    doc_nro: Union[str, int] = 0
    imp_total: float = 0
    imp_neto: float = 0
    imp_iva: float = 0
    imp_tot_conc: float = 0
    imp_op_ex: float = 0
    imp_trib: float = 0
    numero: int = 0
    fecha: Optional[str] = None
    moneda_id: str = "PES"
    moneda_cotiz: float = 1
    condicion_iva_receptor: Optional[int] = None
    alicuotas_iva: Optional[List[AlicuotaIva]] = None
    comprobantes_asociados: Optional[List[ComprobanteAsociado]] = None
    tributos: Optional[List[Tributo]] = None
    opcionales: Optional[List[Opcional]] = None
    fch_serv_desde: Optional[str] = None
    fch_serv_hasta: Optional[str] = None
    fch_vto_pago: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoucherData":
        """Construye desde un dict (ej: JSON de la CLI) con claves snake_case"""
        values = dict(data)
        nested = {
            "alicuotas_iva": AlicuotaIva,
            "comprobantes_asociados": ComprobanteAsociado,
            "tributos": Tributo,
            "opcionales": Opcional,
        }
        for key, model in nested.items():
            if values.get(key) is not None:
                values[key] = [item if isinstance(item, model) else model(**item) for item in values[key]]
        return cls(**values)


@dataclass(frozen=True)
class VoucherRequest:
    """Solicitud FECAESolicitar armada: cabecera + un detalle"""
    punto_venta: int
    tipo_comprobante: int
    cuit_emisor: str
    detalle: Dict[str, Any]

    @property
    def numero(self) -> int:
        return int(self.detalle["CbteDesde"])

    @property
    def fecha(self) -> str:
        return str(self.detalle["CbteFch"])

    def to_fecae_req(self) -> Dict[str, Any]:
        return {
            "FeCabReq": {
                "CantReg": 1,
                "PtoVta": self.punto_venta,
                "CbteTipo": self.tipo_comprobante,
            },
            "FeDetReq": {"FECAEDetRequest": [dict(self.detalle)]},
        }


@dataclass(frozen=True)
class VoucherResult:
    """Resultado normalizado de FECAESolicitar"""
    result: ResultCode
    cae: Optional[str] = None
    cae_vencimiento: Optional[str] = None
    numero: Optional[int] = None
    fecha: Optional[str] = None
    errors: Tuple[Observation, ...] = ()
    observations: Tuple[Observation, ...] = ()
    events: Tuple[Observation, ...] = ()

    @property
    def approved(self) -> bool:
        return self.result == ResultCode.APPROVED

    @property
    def messages(self) -> List[Observation]:
        """Errores de cabecera seguidos de observaciones del detalle"""
        return list(self.errors) + list(self.observations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resultado": self.result.value,
            "cae": self.cae,
            "cae_vencimiento": self.cae_vencimiento,
            "numero": self.numero,
            "fecha": self.fecha,
            "errores": [o.to_dict() for o in self.errors],
            "observaciones": [o.to_dict() for o in self.observations],
            "eventos": [o.to_dict() for o in self.events],
        }


@dataclass(frozen=True)
class QrPayload:
    """Datos del QR (RG 4291) + URL derivada"""
    ver: int
    fecha: str
    cuit: int
    pto_vta: int
    tipo_cmp: int
    nro_cmp: int
    importe: Union[int, float]
    moneda: str
    ctz: Union[int, float]
    tipo_doc_rec: int
    nro_doc_rec: int
    tipo_cod_aut: str
    cod_aut: int
    encoded: str
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ver": self.ver,
            "fecha": self.fecha,
            "cuit": self.cuit,
            "ptoVta": self.pto_vta,
            "tipoCmp": self.tipo_cmp,
            "nroCmp": self.nro_cmp,
            "importe": self.importe,
            "moneda": self.moneda,
            "ctz": self.ctz,
            "tipoDocRec": self.tipo_doc_rec,
            "nroDocRec": self.nro_doc_rec,
            "tipoCodAut": self.tipo_cod_aut,
            "codAut": self.cod_aut,
        }


@dataclass(frozen=True)
class Taxpayer:
    """Contribuyente según Padrón A5"""
    cuit: str
    denominacion: str
    tipo_persona: Optional[str] = None
    condicion_iva: Optional[str] = None
    condicion_iva_codigo: Optional[int] = None
    estado: Optional[str] = None
    domicilio: Optional[str] = None
    fecha_inscripcion: Optional[str] = None


@dataclass(frozen=True)
class TipoComprobante:
    id: int
    descripcion: str
    fch_desde: Optional[str] = None
    fch_hasta: Optional[str] = None


@dataclass(frozen=True)
class PuntoVenta:
    nro: int
    emision_tipo: Optional[str] = None
    bloqueado: bool = False
    fch_baja: Optional[str] = None


@dataclass(frozen=True)
class CondicionIvaReceptor:
    id: int
    descripcion: str
    clase: Optional[str] = None


@dataclass(frozen=True)
class ServerStatus:
    """Estado de WSFE según FEDummy"""
    app_server: Optional[str]
    db_server: Optional[str]
    auth_server: Optional[str]

    @property
    def ok(self) -> bool:
        return all(v == "OK" for v in (self.app_server, self.db_server, self.auth_server))
