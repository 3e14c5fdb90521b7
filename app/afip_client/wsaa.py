"""
WSAA: obtención del Ticket de Acceso.

Flujo: TRA (ventana de ±10 minutos, sin prólogo XML) -> firma CMS ->
loginCms -> TA (token + sign). No hay renovación automática: el llamador
verifica is_ticket_valid() antes de reutilizar un ticket.
"""
import base64
import binascii
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from lxml import etree

from .credentials import CredentialMaterial
from .exceptions import AfipProtocolError, AfipTicketExpiredError
from .models import AccessRequest, AccessTicket
from .signer import DocumentSigner
from .utils import AFIP_TZ

logger = logging.getLogger(__name__)

WSFE_SERVICE = "wsfe"
TRA_WINDOW = timedelta(minutes=10)


# ---------------------------------------------------------------------
# TRA
# ---------------------------------------------------------------------
def build_access_request(service: str, now: Optional[datetime] = None) -> AccessRequest:
    """Arma el TRA para `service` con ventana now-10min .. now+10min"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=AFIP_TZ)
    return AccessRequest(
        service=service,
        unique_id=int(now.timestamp()),
        generation_time=now - TRA_WINDOW,
        expiration_time=now + TRA_WINDOW,
    )


def _format_tra_time(value: datetime) -> str:
    return value.astimezone(AFIP_TZ).replace(microsecond=0).isoformat()


def access_request_to_xml(request: AccessRequest) -> bytes:
    """
    Serializa el TRA sin declaración XML ni espacios iniciales.

    <loginTicketRequest version="1.0"><header><uniqueId/><generationTime/>
    <expirationTime/></header><service/></loginTicketRequest>
    """
    root = etree.Element("loginTicketRequest", version="1.0")
    header = etree.SubElement(root, "header")
    etree.SubElement(header, "uniqueId").text = str(request.unique_id)
    etree.SubElement(header, "generationTime").text = _format_tra_time(request.generation_time)
    etree.SubElement(header, "expirationTime").text = _format_tra_time(request.expiration_time)
    etree.SubElement(root, "service").text = request.service
    return etree.tostring(root, xml_declaration=False, encoding="UTF-8").strip()


def sign_access_request(
    request: AccessRequest,
    credentials: CredentialMaterial,
    signer: DocumentSigner,
) -> str:
    """Firma el TRA y devuelve el CMS en base64 (parámetro in0 de loginCms)"""
    cms = signer.sign(access_request_to_xml(request), credentials.certificate, credentials.private_key)
    return base64.b64encode(cms).decode("ascii")


# ---------------------------------------------------------------------
# TA
# ---------------------------------------------------------------------
def _find_text(root: etree._Element, name: str) -> Optional[str]:
    found = root.xpath(f'//*[local-name()="{name}"]/text()')
    if not found:
        return None
    value = str(found[0]).strip()
    return value or None


def _ticket_document_bytes(raw: Any) -> bytes:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = str(raw or "").strip()
    if not text:
        raise AfipProtocolError("loginCms devolvió una respuesta vacía")
    if text.startswith("<"):
        return text.encode("utf-8")
    # Algunas integraciones devuelven el TA en base64
    try:
        decoded = base64.b64decode("".join(text.split()), validate=True).strip()
    except (binascii.Error, ValueError):
        raise AfipProtocolError("La respuesta de loginCms no es XML ni base64", raw=text)
    if not decoded.startswith(b"<"):
        raise AfipProtocolError("La respuesta de loginCms decodificada no es XML", raw=text)
    return decoded


def parse_login_ticket_response(raw: Any, service: Optional[str] = None) -> AccessTicket:
    """
    Extrae el TA de la respuesta de loginCms.

    generationTime/expirationTime se buscan en todo el documento (AFIP los
    envía en <header>, algunas variantes en <credentials>).

    Raises:
        AfipProtocolError: Si el documento no se puede parsear o faltan campos
    """
    document = _ticket_document_bytes(raw)
    try:
        root = etree.fromstring(document)
    except etree.XMLSyntaxError as e:
        raise AfipProtocolError(f"TA no es XML válido: {e}", raw=document) from e

    fields = {name: _find_text(root, name) for name in ("token", "sign", "generationTime", "expirationTime")}
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise AfipProtocolError(f"TA incompleto, faltan: {', '.join(missing)}", raw=document)

    ticket = AccessTicket(
        token=fields["token"],
        sign=fields["sign"],
        generation_time=fields["generationTime"],
        expiration_time=fields["expirationTime"],
        service=service or _find_text(root, "destination"),
    )
    try:
        ticket.expires_at
    except ValueError as e:
        raise AfipProtocolError(f"expirationTime inválido: {fields['expirationTime']}", raw=document) from e
    return ticket


def is_ticket_valid(ticket: Optional[AccessTicket], now: Optional[datetime] = None) -> bool:
    """True si now < expirationTime (falso en el instante de vencimiento y después)"""
    if ticket is None:
        return False
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=AFIP_TZ)
    return now < ticket.expires_at


def ensure_ticket_valid(ticket: AccessTicket, now: Optional[datetime] = None) -> AccessTicket:
    if not is_ticket_valid(ticket, now):
        raise AfipTicketExpiredError(
            f"Ticket de acceso vencido ({ticket.expiration_time}); solicitar uno nuevo a WSAA"
        )
    return ticket


# ---------------------------------------------------------------------
# Cliente
# ---------------------------------------------------------------------
class WsaaClient:
    """Cliente de autenticación (LoginCms)"""

    def __init__(self, soap: Any, signer: DocumentSigner):
        """
        Args:
            soap: Objeto con call(service_key, operation, **kwargs) (AfipSoapClient)
            signer: Implementación de DocumentSigner
        """
        self.soap = soap
        self.signer = signer

    def login_cms(self, cms_b64: str) -> Any:
        return self.soap.call("wsaa", "loginCms", in0=cms_b64)

    def acquire_ticket(
        self,
        service: str,
        credentials: CredentialMaterial,
        now: Optional[datetime] = None,
    ) -> AccessTicket:
        """
        Obtiene un TA nuevo para `service`.

        Raises:
            AfipSigningError: Si la firma falla
            AfipTransportError / AfipSoapFault: Errores de WSAA
            AfipProtocolError: Si el TA no puede extraerse
        """
        request = build_access_request(service, now)
        logger.info(f"Solicitando TA a WSAA para servicio '{service}' (uniqueId={request.unique_id})")
        cms_b64 = sign_access_request(request, credentials, self.signer)
        raw = self.login_cms(cms_b64)
        ticket = parse_login_ticket_response(raw, service=service)
        logger.info(f"TA obtenido para '{service}', vence {ticket.expiration_time}")
        return ticket
