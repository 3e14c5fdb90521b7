"""
Material criptográfico (certificado X.509 + clave privada) para firmar el TRA.

Cada valor se acepta como PEM listo o como PEM codificado en base64.
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Union

from cryptography import x509

from .exceptions import AfipValidationError
from .utils import validate_certificate_path

logger = logging.getLogger(__name__)

PEM_BEGIN = "-----BEGIN"
_PEM_BLOCK_RE = re.compile(r"-----BEGIN ([^-\r\n]+)-----.*?-----END \1-----", re.DOTALL)


def _has_pem_delimiters(text: str) -> bool:
    """BEGIN y END con la misma etiqueta (CERTIFICATE, PRIVATE KEY, ...)"""
    return _PEM_BLOCK_RE.search(text) is not None


def normalize_pem(value: Union[str, bytes], label: str) -> str:
    """
    Devuelve el valor como texto PEM.

    Si no tiene delimitadores PEM se decodifica una vez como base64 y se
    vuelve a verificar.

    Raises:
        AfipValidationError: Si no hay BEGIN/END después de ambos intentos
    """
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = (value or "").strip()
    if not text:
        raise AfipValidationError(f"{label} vacío")

    if PEM_BEGIN in text:
        if not _has_pem_delimiters(text):
            raise AfipValidationError(f"{label} PEM incompleto: falta el delimitador END correspondiente al BEGIN")
        return text

    try:
        decoded = base64.b64decode("".join(text.split()), validate=True).decode("utf-8").strip()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise AfipValidationError(f"{label} no es PEM ni PEM en base64")

    if not _has_pem_delimiters(decoded):
        raise AfipValidationError(f"{label} decodificado de base64 no contiene delimitadores PEM BEGIN/END")
    return decoded


@dataclass(frozen=True)
class CredentialMaterial:
    """Certificado + clave privada en PEM"""
    certificate: str
    private_key: str

    @classmethod
    def from_values(cls, certificate: Union[str, bytes], private_key: Union[str, bytes]) -> "CredentialMaterial":
        return cls(
            certificate=normalize_pem(certificate, "Certificado"),
            private_key=normalize_pem(private_key, "Clave privada"),
        )

    def __repr__(self) -> str:
        return "CredentialMaterial(certificate=<PEM>, private_key=<oculta>)"


def load_credentials_from_files(cert_path: Union[str, Path], key_path: Union[str, Path]) -> CredentialMaterial:
    """
    Lee certificado y clave desde archivos.

    Raises:
        AfipValidationError: Si algún archivo no existe o no es PEM válido
    """
    cert_file = Path(cert_path).expanduser()
    key_file = Path(key_path).expanduser()
    if not validate_certificate_path(cert_file):
        raise AfipValidationError(f"Certificado no encontrado: {cert_file}")
    if not validate_certificate_path(key_file):
        raise AfipValidationError(f"Clave privada no encontrada: {key_file}")
    return CredentialMaterial.from_values(
        cert_file.read_text(encoding="utf-8"),
        key_file.read_text(encoding="utf-8"),
    )


def certificate_summary(material: CredentialMaterial) -> Dict[str, Any]:
    """
    Resumen del certificado (subject, issuer, serial, vigencia).

    Raises:
        AfipValidationError: Si el certificado no puede leerse
    """
    try:
        cert = x509.load_pem_x509_certificate(material.certificate.encode("utf-8"))
    except ValueError as e:
        raise AfipValidationError(f"Certificado PEM inválido: {e}")

    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    now = datetime.now(timezone.utc)
    return {
        "subject": cert.subject.rfc4514_string(),
        "issuer": cert.issuer.rfc4514_string(),
        "serial_number": format(cert.serial_number, "x"),
        "not_before": not_before.isoformat(),
        "not_after": not_after.isoformat(),
        "expired": now >= not_after,
        "self_signed": cert.subject == cert.issuer,
    }


def log_certificate_summary(material: CredentialMaterial) -> None:
    try:
        summary = certificate_summary(material)
    except AfipValidationError as e:
        logger.warning(f"No se pudo leer el certificado: {e.message}")
        return
    logger.info(
        f"Certificado: subject={summary['subject']} serial={summary['serial_number']} "
        f"vence={summary['not_after']}"
    )
    if summary["expired"]:
        logger.warning(f"Certificado vencido desde {summary['not_after']}; WSAA va a rechazar el TRA")
