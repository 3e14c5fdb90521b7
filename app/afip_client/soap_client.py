"""
Cliente SOAP (zeep) para los web services de AFIP.

Un cliente zeep por servicio ('wsaa', 'wsfe', 'padron'), cacheado en la
instancia. Las respuestas se devuelven como dict/list/str planos y los
errores se traducen a la taxonomía de app.afip_client.exceptions.
"""
import logging
import os
from typing import Any, Dict, Optional

import requests
from lxml import etree
from requests import Session
from requests.adapters import HTTPAdapter
from zeep import Client, Settings
from zeep.exceptions import Fault, XMLSyntaxError
from zeep.exceptions import TransportError as ZeepTransportError
from zeep.helpers import serialize_object
from zeep.plugins import HistoryPlugin
from zeep.transports import Transport

from .config import AfipEnvironment
from .exceptions import AfipSoapFault, AfipTransportError

logger = logging.getLogger(__name__)


def _debug_enabled() -> bool:
    return os.getenv("AFIP_DEBUG_SOAP", "0") in ("1", "true", "True")


def _fault_detail_text(detail: Any) -> Optional[str]:
    if detail is None:
        return None
    if isinstance(detail, etree._Element):
        return etree.tostring(detail, encoding="unicode")
    return str(detail)


class AfipSoapClient:
    """Cliente SOAP para WSAA, WSFEv1 y Padrón A5 de un ambiente"""

    def __init__(self, environment: AfipEnvironment, session: Optional[Session] = None):
        self.environment = environment
        self.connect_timeout, self.read_timeout = environment.timeouts
        self.session = session or self._create_session()
        self.transport = Transport(
            session=self.session,
            timeout=(self.connect_timeout, self.read_timeout),
            operation_timeout=self.read_timeout,
        )
        self.clients: Dict[str, Client] = {}
        self._history_plugins: Dict[str, HistoryPlugin] = {}

    # ---------------------------------------------------------------------
    # Transport
    # ---------------------------------------------------------------------
    def _create_session(self) -> Session:
        session = Session()
        session.verify = True
        session.mount("https://", HTTPAdapter())
        return session

    # ---------------------------------------------------------------------
    # Zeep client
    # ---------------------------------------------------------------------
    def _get_client(self, service_key: str) -> Client:
        if service_key in self.clients:
            return self.clients[service_key]

        wsdl_url = self.environment.get_service_url(service_key)
        logger.info(f"Cargando WSDL para servicio '{service_key}': {wsdl_url}")

        plugins = []
        if _debug_enabled():
            history = HistoryPlugin()
            plugins.append(history)
            self._history_plugins[service_key] = history

        try:
            client = Client(
                wsdl=wsdl_url,
                transport=self.transport,
                settings=Settings(strict=False, xml_huge_tree=True),
                plugins=plugins or None,
            )
        except requests.exceptions.Timeout as e:
            raise AfipTransportError(f"Timeout al descargar WSDL de '{service_key}': {e}") from e
        except requests.exceptions.RequestException as e:
            raise AfipTransportError(f"No se pudo conectar al WSDL de '{service_key}' ({wsdl_url}): {e}") from e
        except ZeepTransportError as e:
            raise AfipTransportError(
                f"Error HTTP al descargar WSDL de '{service_key}': {e.message}",
                http_status=e.status_code,
                raw=e.content,
            ) from e
        except (XMLSyntaxError, etree.XMLSyntaxError) as e:
            raise AfipTransportError(f"WSDL mal formado para '{service_key}' ({wsdl_url}): {e}") from e

        self.clients[service_key] = client
        return client

    def _log_history(self, service_key: str) -> None:
        history = self._history_plugins.get(service_key)
        if history is None:
            return
        for label, entry in (("enviado", history.last_sent), ("recibido", history.last_received)):
            if entry and entry.get("envelope") is not None:
                envelope = etree.tostring(entry["envelope"], encoding="unicode", pretty_print=True)
                logger.debug(f"[{service_key}] SOAP {label}:\n{envelope}")

    # ----- Public API -----
    def call(self, service_key: str, operation: str, **kwargs: Any) -> Any:
        """
        Invoca una operación SOAP.

        Args:
            service_key: 'wsaa', 'wsfe' o 'padron'
            operation: Nombre de la operación (ej: 'FECompUltimoAutorizado')
            **kwargs: Parámetros de la operación

        Returns:
            Resultado serializado a tipos planos (dict, list, str)

        Raises:
            AfipSoapFault: Si el servicio responde con SOAP Fault
            AfipTransportError: Timeout, conexión o HTTP inesperado
        """
        client = self._get_client(service_key)
        logger.debug(f"[{service_key}] {operation} -> AFIP")
        try:
            result = getattr(client.service, operation)(**kwargs)
        except Fault as e:
            raise AfipSoapFault(
                e.message or "SOAP Fault sin mensaje",
                code=e.code,
                detail=_fault_detail_text(e.detail),
            ) from e
        except requests.exceptions.Timeout as e:
            raise AfipTransportError(
                f"Timeout en {operation} (connect={self.connect_timeout}s, read={self.read_timeout}s)"
            ) from e
        except requests.exceptions.RequestException as e:
            raise AfipTransportError(f"Error de conexión en {operation}: {e}") from e
        except ZeepTransportError as e:
            raise AfipTransportError(
                f"HTTP {e.status_code} en {operation}: {e.message}",
                http_status=e.status_code,
                raw=e.content,
            ) from e
        except (XMLSyntaxError, etree.XMLSyntaxError) as e:
            raise AfipTransportError(f"Respuesta SOAP mal formada en {operation}: {e}") from e
        finally:
            self._log_history(service_key)

        return serialize_object(result, dict)

    def close(self) -> None:
        self.session.close()
        self.clients.clear()

    def __enter__(self) -> "AfipSoapClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
