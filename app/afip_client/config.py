"""
Configuración para cliente AFIP (WSAA / WSFEv1 / Padrón A5)

Los componentes reciben un AfipEnvironment explícito. La única lectura del
entorno del proceso ocurre en get_afip_environment() y get_credentials_from_env().
"""
import os
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from .credentials import CredentialMaterial, load_credentials_from_files

ENV_PROD = "produccion"
ENV_HOMO = "homologacion"

ENV_ALIASES = {
    "produccion": ENV_PROD,
    "production": ENV_PROD,
    "prod": ENV_PROD,
    "homologacion": ENV_HOMO,
    "homo": ENV_HOMO,
    "test": ENV_HOMO,
    "sandbox": ENV_HOMO,
}

SERVICE_URLS: Dict[str, Dict[str, str]] = {
    ENV_PROD: {
        "wsaa": "https://wsaa.afip.gov.ar/ws/services/LoginCms?WSDL",
        "wsfe": "https://servicios1.afip.gov.ar/wsfev1/service.asmx?WSDL",
        "padron": "https://aws.afip.gov.ar/sr-padron/webservices/personaServiceA5?WSDL",
    },
    ENV_HOMO: {
        "wsaa": "https://wsaahomo.afip.gov.ar/ws/services/LoginCms?WSDL",
        "wsfe": "https://wswhomo.afip.gov.ar/wsfev1/service.asmx?WSDL",
        "padron": "https://awshomo.afip.gov.ar/sr-padron/webservices/personaServiceA5?WSDL",
    },
}

QR_URL_BASE = "https://www.afip.gob.ar/fe/qr/?p="

DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_READ_TIMEOUT = 30


@dataclass(frozen=True)
class AfipEnvironment:
    """Ambiente AFIP: URLs de los servicios y timeouts"""
    name: str
    wsaa_url: str
    wsfe_url: str
    padron_url: str
    qr_base_url: str = QR_URL_BASE
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT

    @classmethod
    def for_name(cls, name: str, **overrides) -> "AfipEnvironment":
        """
        Construye el ambiente a partir de su nombre.

        Args:
            name: 'produccion' u 'homologacion' (acepta alias como 'prod', 'test')
            **overrides: campos a reemplazar (ej: wsfe_url, read_timeout)

        Raises:
            ValueError: Si el ambiente no es válido
        """
        key = ENV_ALIASES.get((name or "").strip().lower())
        if key is None:
            raise ValueError(f"Ambiente inválido: {name!r}. Debe ser '{ENV_PROD}' o '{ENV_HOMO}'")
        urls = SERVICE_URLS[key]
        env = cls(
            name=key,
            wsaa_url=urls["wsaa"],
            wsfe_url=urls["wsfe"],
            padron_url=urls["padron"],
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(env, **overrides) if overrides else env

    @property
    def is_production(self) -> bool:
        return self.name == ENV_PROD

    @property
    def timeouts(self) -> Tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    def get_service_url(self, service_key: str) -> str:
        urls = {"wsaa": self.wsaa_url, "wsfe": self.wsfe_url, "padron": self.padron_url}
        if service_key not in urls:
            raise ValueError(f"Servicio desconocido: {service_key}")
        return urls[service_key]

    def describe(self) -> Dict[str, str]:
        return {
            "environment": self.name,
            "wsaa_url": self.wsaa_url,
            "wsfe_url": self.wsfe_url,
            "padron_url": self.padron_url,
        }


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} debe ser numérico, se recibió {value!r}")


def get_afip_environment(env: Optional[str] = None) -> AfipEnvironment:
    """
    Obtiene el ambiente desde variables de entorno (.env incluido).

    Args:
        env: Ambiente explícito. Si es None, usa AFIP_ENVIRONMENT (default homologacion)
    """
    load_dotenv()
    name = env or os.getenv("AFIP_ENVIRONMENT", ENV_HOMO)
    return AfipEnvironment.for_name(
        name,
        wsaa_url=os.getenv("AFIP_WSAA_URL") or None,
        wsfe_url=os.getenv("AFIP_WSFE_URL") or None,
        padron_url=os.getenv("AFIP_PADRON_URL") or None,
        connect_timeout=_float_env("AFIP_SOAP_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
        read_timeout=_float_env("AFIP_SOAP_READ_TIMEOUT", DEFAULT_READ_TIMEOUT),
    )


def get_credentials_from_env() -> CredentialMaterial:
    """
    Obtiene certificado y clave privada desde el entorno.

    Prioridad:
    1. AFIP_CERT / AFIP_KEY (PEM o PEM en base64)
    2. AFIP_CERT_PATH / AFIP_KEY_PATH (archivos)

    Raises:
        RuntimeError: Si faltan las variables de entorno
    """
    load_dotenv()
    cert = os.getenv("AFIP_CERT")
    key = os.getenv("AFIP_KEY")
    if cert and key:
        return CredentialMaterial.from_values(cert, key)

    cert_path = os.getenv("AFIP_CERT_PATH")
    key_path = os.getenv("AFIP_KEY_PATH")
    if not cert_path or not key_path:
        raise RuntimeError("Falta AFIP_CERT+AFIP_KEY o AFIP_CERT_PATH+AFIP_KEY_PATH en el entorno")
    return load_credentials_from_files(cert_path, key_path)


def get_issuer_cuit_from_env() -> str:
    load_dotenv()
    cuit = os.getenv("AFIP_CUIT")
    if not cuit:
        raise RuntimeError("Falta AFIP_CUIT en el entorno")
    return cuit
