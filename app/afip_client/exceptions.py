"""
Excepciones personalizadas para el cliente AFIP
"""
from typing import Any, List, Optional


def _excerpt(raw: Any, limit: int = 500) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return str(raw)[:limit]


class AfipException(Exception):
    """Excepción base para errores AFIP"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class AfipValidationError(AfipException):
    """Error de validación (credenciales, documento, formato, etc.)"""
    pass


class AfipTicketExpiredError(AfipValidationError):
    """El ticket de acceso ya no está vigente"""
    pass


class AfipSigningError(AfipException):
    """Error al firmar el TRA (certificado, clave u openssl)"""
    pass


class AfipTransportError(AfipException):
    """Endpoint inalcanzable, timeout o respuesta de transporte mal formada"""
    retryable = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        raw: Any = None,
    ):
        self.http_status = http_status
        self.raw = _excerpt(raw)
        super().__init__(message, code)


class AfipSoapFault(AfipException):
    """SOAP Fault devuelto por un web service de AFIP"""
    def __init__(self, message: str, code: Optional[str] = None, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(message, code)


class AfipProtocolError(AfipException):
    """Respuesta o ticket imposible de interpretar (cambio de contrato remoto)"""
    def __init__(self, message: str, raw: Any = None, code: Optional[str] = None):
        self.raw = _excerpt(raw)
        if self.raw:
            message = f"{message} | raw={self.raw}"
        super().__init__(message, code)


class AfipServiceError(AfipException):
    """Errores de cabecera (Errors/Err) devueltos por un servicio AFIP"""
    def __init__(self, message: str, errors: Optional[List[Any]] = None, code: Optional[str] = None):
        self.errors = list(errors or [])
        if code is None and self.errors:
            code = str(self.errors[0].code)
        super().__init__(message, code)


class AfipSequenceLookupError(AfipServiceError):
    """Falla real al consultar el último comprobante autorizado"""
    pass


class AfipFiscalRejectionError(AfipException):
    """AFIP rechazó el comprobante (Resultado = R)"""
    def __init__(self, message: str, observations: List[Any], result: Any = None):
        self.observations = list(observations)
        self.result = result
        code = str(self.observations[0].code) if self.observations else None
        super().__init__(message, code)


class AfipQRError(AfipException):
    """Error en la generación del QR"""
    pass
