"""
Utilidades para AFIP
"""
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, List, Optional, Union

from .exceptions import AfipValidationError

# Hora de Argentina (sin horario de verano)
AFIP_TZ = timezone(timedelta(hours=-3), "ART")

_DATE8_RE = re.compile(r"^\d{8}$")


def validate_certificate_path(cert_path: Path) -> bool:
    """
    Valida que el certificado (o clave) existe y es un archivo

    Args:
        cert_path: Ruta al archivo

    Returns:
        True si es válido
    """
    return cert_path.exists() and cert_path.is_file()


def clean_tax_id(value: Union[str, int, float, Decimal]) -> str:
    """Quita guiones y espacios de un CUIT/CUIL ('20-12345678-9' -> '20123456789')"""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        # Números de JSON: 12345678.0 es 12345678; con decimales no es un documento
        return str(int(value)) if value == int(value) else str(value)
    return re.sub(r"[\s\-.]", "", str(value))


def today_yyyymmdd(now: Optional[datetime] = None) -> str:
    """Fecha de hoy (calendario de Argentina) en formato YYYYMMDD"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.strftime("%Y%m%d")
    return now.astimezone(AFIP_TZ).strftime("%Y%m%d")


def normalize_date8(value: Union[str, date, None], field: str = "fecha") -> Optional[str]:
    """
    Normaliza una fecha a YYYYMMDD.

    Acepta 'YYYYMMDD', 'YYYY-MM-DD' o date/datetime.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y%m%d")
    text = str(value).strip().replace("-", "")
    if not _DATE8_RE.match(text):
        raise AfipValidationError(f"{field} inválida: {value!r} (se espera YYYYMMDD)")
    try:
        datetime.strptime(text, "%Y%m%d")
    except ValueError:
        raise AfipValidationError(f"{field} inválida: {value!r}")
    return text


def hyphenate_date(value: str) -> str:
    """'20251205' -> '2025-12-05'"""
    text = normalize_date8(value)
    return f"{text[0:4]}-{text[4:6]}-{text[6:8]}"


def as_list(value: Any) -> List[Any]:
    """Arreglo o elemento suelto -> lista (None -> [])"""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def to_int(value: Any, default: int = 0) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def amount(value: Any, field: str = "importe") -> float:
    """Importe redondeado a 2 decimales"""
    if value is None or value == "":
        return 0.0
    try:
        return float(round(Decimal(str(value)), 2))
    except (InvalidOperation, ValueError):
        raise AfipValidationError(f"{field} inválido: {value!r}")


def json_number(value: Any) -> Union[int, float]:
    """Número como lo serializa JSON.stringify: 1210.00 -> 1210, 1210.5 -> 1210.5"""
    number = Decimal(str(value))
    if number == number.to_integral_value():
        return int(number)
    return float(number)
