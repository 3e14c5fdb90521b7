from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from app.afip_client import qr_generator
from app.afip_client.config import AfipEnvironment
from app.afip_client.credentials import CredentialMaterial, log_certificate_summary
from app.afip_client.invoice_builder import build_voucher_request, voucher_class
from app.afip_client.models import (
    AccessTicket,
    CondicionIvaReceptor,
    PuntoVenta,
    QrPayload,
    SequenceState,
    ServerStatus,
    Taxpayer,
    TipoComprobante,
    VoucherData,
    VoucherRequest,
    VoucherResult,
)
from app.afip_client.padron import PADRON_SERVICE, PadronClient
from app.afip_client.response_normalizer import normalize_voucher_response
from app.afip_client.sequence import SequenceResolver
from app.afip_client.signer import DocumentSigner, OpenSslCmsSigner
from app.afip_client.soap_client import AfipSoapClient
from app.afip_client.wsaa import WSFE_SERVICE, WsaaClient, ensure_ticket_valid, is_ticket_valid
from app.afip_client.wsfe import WsfeClient

logger = logging.getLogger(__name__)


@contextmanager
def _soap_scope(environment: AfipEnvironment, soap: Any = None) -> Iterator[Any]:
    """Usa el cliente SOAP recibido o abre uno propio y lo cierra al salir"""
    if soap is not None:
        yield soap
        return
    with AfipSoapClient(environment) as own:
        yield own


# ---------------------------------------------------------------------
# Ticket
# ---------------------------------------------------------------------
def acquire_ticket(
    *,
    service: str,
    credentials: CredentialMaterial,
    environment: AfipEnvironment,
    signer: Optional[DocumentSigner] = None,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> AccessTicket:
    """Pide un TA nuevo a WSAA para `service`"""
    log_certificate_summary(credentials)
    with _soap_scope(environment, soap) as client:
        return WsaaClient(client, signer or OpenSslCmsSigner()).acquire_ticket(service, credentials, now)


def is_valid(ticket: Optional[AccessTicket], now: Optional[datetime] = None) -> bool:
    return is_ticket_valid(ticket, now)


def _reusable(ticket: Optional[AccessTicket], service: str, now: Optional[datetime] = None) -> bool:
    """Vigente y emitido para `service` (o sin servicio declarado)"""
    if not is_ticket_valid(ticket, now):
        return False
    if ticket.service not in (None, service):
        logger.info(f"TA recibido es para '{ticket.service}', se necesita '{service}'; se pide uno nuevo")
        return False
    return True


class TicketCache:
    """
    Cache en memoria de TAs, propiedad del llamador.

    Clave: (ambiente, servicio, huella del certificado). Solo devuelve
    tickets vigentes.
    """

    def __init__(self) -> None:
        self._tickets: Dict[Tuple[str, str, str], AccessTicket] = {}

    @staticmethod
    def _key(environment: AfipEnvironment, service: str, credentials: CredentialMaterial) -> Tuple[str, str, str]:
        fingerprint = hashlib.sha256(credentials.certificate.encode("utf-8")).hexdigest()[:16]
        return (environment.name, service, fingerprint)

    def get(
        self,
        environment: AfipEnvironment,
        service: str,
        credentials: CredentialMaterial,
        now: Optional[datetime] = None,
    ) -> Optional[AccessTicket]:
        key = self._key(environment, service, credentials)
        ticket = self._tickets.get(key)
        if ticket is not None and not is_ticket_valid(ticket, now):
            logger.info(f"TA en cache vencido para '{service}' ({ticket.expiration_time})")
            del self._tickets[key]
            return None
        return ticket

    def put(
        self,
        environment: AfipEnvironment,
        service: str,
        credentials: CredentialMaterial,
        ticket: AccessTicket,
    ) -> None:
        self._tickets[self._key(environment, service, credentials)] = ticket

    def get_or_acquire(
        self,
        *,
        service: str,
        credentials: CredentialMaterial,
        environment: AfipEnvironment,
        signer: Optional[DocumentSigner] = None,
        soap: Any = None,
        now: Optional[datetime] = None,
    ) -> AccessTicket:
        ticket = self.get(environment, service, credentials, now)
        if ticket is None:
            ticket = acquire_ticket(
                service=service,
                credentials=credentials,
                environment=environment,
                signer=signer,
                soap=soap,
                now=now,
            )
            self.put(environment, service, credentials, ticket)
        return ticket


# ---------------------------------------------------------------------
# Emisión
# ---------------------------------------------------------------------
def resolve_next(
    *,
    pto_vta: int,
    cbte_tipo: int,
    ticket: AccessTicket,
    cuit: str,
    environment: AfipEnvironment,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> SequenceState:
    with _soap_scope(environment, soap) as client:
        return SequenceResolver(WsfeClient(client)).resolve_next(pto_vta, cbte_tipo, ticket, cuit, now)


def submit_voucher_request(
    *,
    request: VoucherRequest,
    ticket: AccessTicket,
    cuit: str,
    environment: AfipEnvironment,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> VoucherResult:
    """Envía un VoucherRequest ya armado y normaliza la respuesta"""
    ensure_ticket_valid(ticket, now)
    with _soap_scope(environment, soap) as client:
        raw = WsfeClient(client).solicitar_cae(ticket, cuit, request)
    return normalize_voucher_response(raw)


def build_and_submit(
    *,
    voucher_data: VoucherData,
    sequence: SequenceState,
    ticket: AccessTicket,
    cuit: str,
    environment: AfipEnvironment,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> VoucherResult:
    """
    Arma y envía el comprobante.

    Raises:
        AfipValidationError: Datos inválidos o ticket vencido
        AfipFiscalRejectionError: Resultado R
    """
    request = build_voucher_request(voucher_data, sequence, cuit, now)
    return submit_voucher_request(
        request=request, ticket=ticket, cuit=cuit, environment=environment, soap=soap, now=now
    )


def build_qr(request: VoucherRequest, result: VoucherResult, environment: Optional[AfipEnvironment] = None) -> QrPayload:
    if environment is None:
        return qr_generator.build_qr(request, result)
    return qr_generator.build_qr(request, result, environment.qr_base_url)


@dataclass(frozen=True)
class IssuanceOutcome:
    ticket: AccessTicket
    sequence: SequenceState
    request: VoucherRequest
    result: VoucherResult
    qr: Optional[QrPayload]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.result.approved,
            "resultado": self.result.result.value,
            "punto_venta": self.request.punto_venta,
            "tipo_comprobante": self.request.tipo_comprobante,
            "numero": self.request.numero,
            "fecha": self.request.fecha,
            "cae": self.result.cae,
            "cae_vencimiento": self.result.cae_vencimiento,
            "observaciones": [o.to_dict() for o in self.result.messages],
            "qr_url": self.qr.url if self.qr else None,
            "meta": {
                "primer_comprobante": self.sequence.first_voucher,
                "ultimo_autorizado": self.sequence.last_number,
                "ticket_vence": self.ticket.expiration_time,
            },
        }


def issue_invoice(
    *,
    voucher_data: VoucherData,
    credentials: CredentialMaterial,
    cuit: str,
    environment: AfipEnvironment,
    ticket: Optional[AccessTicket] = None,
    ticket_cache: Optional[TicketCache] = None,
    signer: Optional[DocumentSigner] = None,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> IssuanceOutcome:
    """
    Flujo completo y secuencial: TA (si hace falta) -> último autorizado ->
    FECAESolicitar -> QR (solo Aprobado).

    Un ticket recibido se reutiliza mientras esté vigente y sea de wsfe.
    """
    voucher_class(voucher_data.tipo_comprobante)
    with _soap_scope(environment, soap) as client:
        if not _reusable(ticket, WSFE_SERVICE, now):
            if ticket_cache is not None:
                ticket = ticket_cache.get_or_acquire(
                    service=WSFE_SERVICE,
                    credentials=credentials,
                    environment=environment,
                    signer=signer,
                    soap=client,
                    now=now,
                )
            else:
                ticket = acquire_ticket(
                    service=WSFE_SERVICE,
                    credentials=credentials,
                    environment=environment,
                    signer=signer,
                    soap=client,
                    now=now,
                )

        sequence = resolve_next(
            pto_vta=voucher_data.punto_venta,
            cbte_tipo=voucher_data.tipo_comprobante,
            ticket=ticket,
            cuit=cuit,
            environment=environment,
            soap=client,
            now=now,
        )
        request = build_voucher_request(voucher_data, sequence, cuit, now)
        result = submit_voucher_request(
            request=request, ticket=ticket, cuit=cuit, environment=environment, soap=client, now=now
        )

    qr = build_qr(request, result, environment) if result.approved else None
    logger.info(
        f"Comprobante {request.punto_venta}-{request.numero} tipo {request.tipo_comprobante}: "
        f"{result.result.value} CAE={result.cae}"
    )
    return IssuanceOutcome(ticket=ticket, sequence=sequence, request=request, result=result, qr=qr)


# ---------------------------------------------------------------------
# Consultas
# ---------------------------------------------------------------------
def lookup_taxpayer(
    *,
    cuit: str,
    issuer_cuit: str,
    credentials: CredentialMaterial,
    environment: AfipEnvironment,
    ticket: Optional[AccessTicket] = None,
    signer: Optional[DocumentSigner] = None,
    soap: Any = None,
    now: Optional[datetime] = None,
) -> Taxpayer:
    """Consulta Padrón A5 con un TA de 'ws_sr_constancia_inscripcion'"""
    with _soap_scope(environment, soap) as client:
        if not _reusable(ticket, PADRON_SERVICE, now):
            ticket = acquire_ticket(
                service=PADRON_SERVICE,
                credentials=credentials,
                environment=environment,
                signer=signer,
                soap=client,
                now=now,
            )
        return PadronClient(client).get_persona(ticket, issuer_cuit, cuit, now)


def tipos_comprobante(
    *, ticket: AccessTicket, cuit: str, environment: AfipEnvironment, soap: Any = None
) -> List[TipoComprobante]:
    ensure_ticket_valid(ticket)
    with _soap_scope(environment, soap) as client:
        return WsfeClient(client).tipos_comprobante(ticket, cuit)


def puntos_venta(
    *, ticket: AccessTicket, cuit: str, environment: AfipEnvironment, soap: Any = None
) -> List[PuntoVenta]:
    ensure_ticket_valid(ticket)
    with _soap_scope(environment, soap) as client:
        return WsfeClient(client).puntos_venta(ticket, cuit)


def condiciones_iva_receptor(
    *,
    ticket: AccessTicket,
    cuit: str,
    environment: AfipEnvironment,
    clase: Optional[str] = None,
    soap: Any = None,
) -> List[CondicionIvaReceptor]:
    ensure_ticket_valid(ticket)
    with _soap_scope(environment, soap) as client:
        return WsfeClient(client).condiciones_iva_receptor(ticket, cuit, clase)


def server_status(*, environment: AfipEnvironment, soap: Any = None) -> ServerStatus:
    with _soap_scope(environment, soap) as client:
        return WsfeClient(client).dummy()
