"""
Módulo cliente para integración con AFIP (Administración Federal de Ingresos Públicos)
Argentina - WSAA / WSFEv1 / Padrón A5
"""
from .config import AfipEnvironment, get_afip_environment, get_credentials_from_env, get_issuer_cuit_from_env
from .credentials import CredentialMaterial, certificate_summary, load_credentials_from_files, normalize_pem
from .signer import CryptographyCmsSigner, DocumentSigner, OpenSslCmsSigner, get_signer
from .soap_client import AfipSoapClient
from .wsaa import (
    WSFE_SERVICE,
    WsaaClient,
    access_request_to_xml,
    build_access_request,
    is_ticket_valid,
    parse_login_ticket_response,
)
from .wsfe import WsfeClient
from .sequence import SequenceResolver
from .invoice_builder import build_voucher_request, voucher_class
from .response_normalizer import normalize_voucher_response
from .qr_generator import QRGenerator, build_qr
from .padron import PADRON_SERVICE, PadronClient
from .models import (
    AccessRequest,
    AccessTicket,
    AlicuotaIva,
    ComprobanteAsociado,
    Observation,
    Opcional,
    QrPayload,
    ResultCode,
    SequenceState,
    Taxpayer,
    Tributo,
    VoucherData,
    VoucherRequest,
    VoucherResult,
)
from .exceptions import (
    AfipException,
    AfipValidationError,
    AfipTicketExpiredError,
    AfipSigningError,
    AfipTransportError,
    AfipSoapFault,
    AfipProtocolError,
    AfipServiceError,
    AfipSequenceLookupError,
    AfipFiscalRejectionError,
    AfipQRError,
)

__all__ = [
    'AfipEnvironment',
    'get_afip_environment',
    'get_credentials_from_env',
    'get_issuer_cuit_from_env',
    'CredentialMaterial',
    'certificate_summary',
    'load_credentials_from_files',
    'normalize_pem',
    'DocumentSigner',
    'OpenSslCmsSigner',
    'CryptographyCmsSigner',
    'get_signer',
    'AfipSoapClient',
    'WSFE_SERVICE',
    'WsaaClient',
    'access_request_to_xml',
    'build_access_request',
    'is_ticket_valid',
    'parse_login_ticket_response',
    'WsfeClient',
    'SequenceResolver',
    'build_voucher_request',
    'voucher_class',
    'normalize_voucher_response',
    'QRGenerator',
    'build_qr',
    'PADRON_SERVICE',
    'PadronClient',
    'AccessRequest',
    'AccessTicket',
    'AlicuotaIva',
    'ComprobanteAsociado',
    'Observation',
    'Opcional',
    'QrPayload',
    'ResultCode',
    'SequenceState',
    'Taxpayer',
    'Tributo',
    'VoucherData',
    'VoucherRequest',
    'VoucherResult',
    'AfipException',
    'AfipValidationError',
    'AfipTicketExpiredError',
    'AfipSigningError',
    'AfipTransportError',
    'AfipSoapFault',
    'AfipProtocolError',
    'AfipServiceError',
    'AfipSequenceLookupError',
    'AfipFiscalRejectionError',
    'AfipQRError',
]
