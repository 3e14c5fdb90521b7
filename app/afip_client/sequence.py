"""
Resolución del próximo número de comprobante.

WSFE informa "no hay comprobantes previos" de varias formas: HTTP 404 o
texto "not found", SOAP Fault / Errors con código 10015 o mensaje
"no encontrado"/"sin comprobantes", o CbteNro = 0 con fecha vacía. Todas se
clasifican con la tabla de abajo y se convierten en el caso canónico de
primer comprobante {0, hoy}. Cualquier otra falla es AfipSequenceLookupError.

El estado no se cachea: otros emisores pueden avanzar la secuencia.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from .exceptions import (
    AfipException,
    AfipSequenceLookupError,
    AfipServiceError,
    AfipSoapFault,
    AfipTransportError,
)
from .models import AccessTicket, Observation, SequenceState
from .response_normalizer import header_errors
from .utils import normalize_date8, to_int, today_yyyymmdd
from .wsaa import ensure_ticket_valid
from .wsfe import WsfeClient

logger = logging.getLogger(__name__)

# Tabla de clasificación "no encontrado"
NOT_FOUND_FAULT_CODES = frozenset({10015})
NOT_FOUND_HTTP_STATUSES = frozenset({404})
NOT_FOUND_TEXT_MARKERS = ("not found", "no encontrado", "sin comprobantes", "404")


def _text_signals_not_found(*texts: Optional[str]) -> bool:
    for text in texts:
        if text and any(marker in str(text).lower() for marker in NOT_FOUND_TEXT_MARKERS):
            return True
    return False


def errors_signal_not_found(errors: Iterable[Observation]) -> bool:
    return any(e.code in NOT_FOUND_FAULT_CODES or _text_signals_not_found(e.msg) for e in errors)


def exception_signals_not_found(exc: AfipException) -> bool:
    if isinstance(exc, AfipTransportError):
        if exc.http_status in NOT_FOUND_HTTP_STATUSES:
            return True
        return _text_signals_not_found(exc.message, exc.raw)
    if isinstance(exc, AfipSoapFault):
        if to_int(exc.code, default=-1) in NOT_FOUND_FAULT_CODES:
            return True
        return _text_signals_not_found(exc.message, exc.detail)
    if isinstance(exc, AfipServiceError):
        return errors_signal_not_found(exc.errors)
    return False


class SequenceResolver:
    """Consulta FECompUltimoAutorizado y deriva número siguiente y fecha mínima"""

    def __init__(self, wsfe: WsfeClient):
        self.wsfe = wsfe

    def _first_voucher(self, pto_vta: int, cbte_tipo: int, today: str, reason: str) -> SequenceState:
        logger.info(f"Sin comprobantes previos para PtoVta={pto_vta} CbteTipo={cbte_tipo} ({reason})")
        return SequenceState(
            punto_venta=pto_vta,
            tipo_comprobante=cbte_tipo,
            last_number=0,
            last_date=today,
            first_voucher=True,
        )

    def _lookup_last_date(
        self, ticket: AccessTicket, cuit: str, pto_vta: int, cbte_tipo: int, number: int, today: str
    ) -> str:
        try:
            data = self.wsfe.consultar_comprobante(ticket, cuit, pto_vta, cbte_tipo, number)
        except AfipServiceError as e:
            raise AfipSequenceLookupError(
                f"No se pudo obtener la fecha del comprobante {number}: {e.message}", e.errors
            ) from e
        except AfipSoapFault as e:
            raise AfipSequenceLookupError(
                f"No se pudo obtener la fecha del comprobante {number}: {e.message}", code=e.code
            ) from e
        last_date = str(data.get("CbteFch") or "").strip()
        if not last_date:
            logger.warning(f"FECompConsultar sin CbteFch para comprobante {number}; se usa la fecha de hoy")
            return today
        return last_date

    def resolve_next(
        self,
        pto_vta: int,
        cbte_tipo: int,
        ticket: AccessTicket,
        cuit: str,
        now: Optional[datetime] = None,
    ) -> SequenceState:
        """
        Args:
            pto_vta: Punto de venta
            cbte_tipo: Tipo de comprobante
            ticket: TA vigente para 'wsfe'
            cuit: CUIT emisor
            now: Instante de referencia para "hoy" (tests)

        Returns:
            SequenceState; next_number = last_number + 1, date_floor = last_date

        Raises:
            AfipTicketExpiredError: Si el ticket venció
            AfipSequenceLookupError: Falla real de la consulta
            AfipTransportError: Timeout o conexión (reintentable por el llamador)
        """
        ensure_ticket_valid(ticket, now)
        pto_vta, cbte_tipo = int(pto_vta), int(cbte_tipo)
        today = today_yyyymmdd(now)

        try:
            result = self.wsfe.ultimo_autorizado(ticket, cuit, pto_vta, cbte_tipo)
        except (AfipTransportError, AfipSoapFault) as e:
            if exception_signals_not_found(e):
                return self._first_voucher(pto_vta, cbte_tipo, today, e.message)
            if isinstance(e, AfipTransportError):
                raise
            raise AfipSequenceLookupError(f"FECompUltimoAutorizado falló: {e.message}", code=e.code) from e

        errors: List[Observation] = header_errors(result)
        if errors:
            if errors_signal_not_found(errors):
                return self._first_voucher(pto_vta, cbte_tipo, today, errors[0].msg)
            detail = "; ".join(f"{e.code}: {e.msg}" for e in errors)
            raise AfipSequenceLookupError(f"FECompUltimoAutorizado devolvió errores: {detail}", errors)

        last_number = to_int(result.get("CbteNro"))
        raw_date = str(result.get("CbteFch") or "").strip()
        if last_number <= 0:
            return self._first_voucher(pto_vta, cbte_tipo, today, "CbteNro = 0")

        if raw_date:
            last_date = normalize_date8(raw_date, "CbteFch")
        else:
            last_date = self._lookup_last_date(ticket, cuit, pto_vta, cbte_tipo, last_number, today)

        logger.info(f"Último autorizado PtoVta={pto_vta} CbteTipo={cbte_tipo}: {last_number} ({last_date})")
        return SequenceState(
            punto_venta=pto_vta,
            tipo_comprobante=cbte_tipo,
            last_number=last_number,
            last_date=last_date,
        )
