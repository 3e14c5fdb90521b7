"""
Firma CMS (PKCS#7 SignedData, no detached) del TRA para WSAA.

DocumentSigner es la interfaz; hay dos implementaciones:
- OpenSslCmsSigner: escribe TRA, certificado y clave en archivos temporales
  (clave con permisos 0400), ejecuta `openssl smime -sign` y borra todo en
  cualquier salida.
- CryptographyCmsSigner: firma en memoria con `cryptography`.
"""
import logging
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from .exceptions import AfipSigningError

logger = logging.getLogger(__name__)


class DocumentSigner(ABC):
    """Firma un documento y devuelve el sobre CMS en DER"""

    @abstractmethod
    def sign(self, document: bytes, certificate: str, private_key: str) -> bytes:
        raise NotImplementedError


def _find_openssl_binary() -> Optional[str]:
    """
    Encuentra el binario openssl disponible en el sistema.

    Prioridad:
    1. AFIP_OPENSSL_BIN
    2. /opt/homebrew/bin/openssl (macOS Homebrew en Apple Silicon)
    3. openssl en PATH
    """
    configured = os.getenv("AFIP_OPENSSL_BIN")
    if configured:
        return configured

    homebrew_openssl = "/opt/homebrew/bin/openssl"
    if os.path.exists(homebrew_openssl) and os.access(homebrew_openssl, os.X_OK):
        return homebrew_openssl

    return shutil.which("openssl")


def _write_temp(staged: List[str], data: bytes, prefix: str, suffix: str, mode: int) -> str:
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    staged.append(path)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, mode)
    return path


def cleanup_temp_files(paths: List[str]) -> None:
    """Borra los archivos temporales de la firma; un fallo solo se loguea"""
    for path in paths:
        if path and os.path.exists(path):
            try:
                os.unlink(path)
                logger.debug(f"Archivo temporal eliminado: {Path(path).name}")
            except OSError as e:
                logger.warning(f"No se pudo eliminar archivo temporal {Path(path).name}: {str(e)}")


class OpenSslCmsSigner(DocumentSigner):
    """Firma con `openssl smime -sign -outform DER -nodetach -binary`"""

    def __init__(self, openssl_bin: Optional[str] = None, timeout: float = 30):
        self.openssl_bin = openssl_bin
        self.timeout = timeout

    def _command(self, openssl_bin: str, doc_path: str, cert_path: str, key_path: str) -> List[str]:
        return [
            openssl_bin,
            "smime",
            "-sign",
            "-signer", cert_path,
            "-inkey", key_path,
            "-outform", "DER",
            "-nodetach",
            "-binary",
            "-in", doc_path,
        ]

    def sign(self, document: bytes, certificate: str, private_key: str) -> bytes:
        openssl_bin = self.openssl_bin or _find_openssl_binary()
        if not openssl_bin:
            raise AfipSigningError("No se encontró el binario openssl (configure AFIP_OPENSSL_BIN)")

        staged: List[str] = []
        try:
            doc_path = _write_temp(staged, document, "afip_tra_", ".xml", 0o600)
            cert_path = _write_temp(staged, certificate.encode("utf-8"), "afip_cert_", ".crt", 0o600)
            key_path = _write_temp(staged, private_key.encode("utf-8"), "afip_key_", ".key", 0o400)

            try:
                result = subprocess.run(
                    self._command(openssl_bin, doc_path, cert_path, key_path),
                    capture_output=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                raise AfipSigningError(f"openssl no respondió en {self.timeout}s")
            except OSError as e:
                raise AfipSigningError(f"No se pudo ejecutar openssl ({openssl_bin}): {e}")

            if result.returncode != 0:
                error_output = (result.stderr or result.stdout or b"Sin salida").decode("utf-8", errors="replace")
                raise AfipSigningError(
                    f"Error al firmar TRA con OpenSSL: {error_output[:500]}",
                    code=str(result.returncode),
                )
            if not result.stdout:
                raise AfipSigningError("openssl no devolvió el CMS firmado")
            return result.stdout
        except OSError as e:
            raise AfipSigningError(f"No se pudo preparar el material de firma: {e}") from e
        finally:
            cleanup_temp_files(staged)


class CryptographyCmsSigner(DocumentSigner):
    """Firma en memoria con el builder PKCS#7 de cryptography (SHA-256)"""

    def sign(self, document: bytes, certificate: str, private_key: str) -> bytes:
        try:
            cert = x509.load_pem_x509_certificate(certificate.encode("utf-8"))
            key = serialization.load_pem_private_key(private_key.encode("utf-8"), password=None)
        except (ValueError, TypeError) as e:
            raise AfipSigningError(f"Certificado o clave privada ilegibles: {e}") from e

        try:
            return (
                pkcs7.PKCS7SignatureBuilder()
                .set_data(document)
                .add_signer(cert, key, hashes.SHA256())
                .sign(serialization.Encoding.DER, [pkcs7.PKCS7Options.Binary])
            )
        except (ValueError, TypeError) as e:
            raise AfipSigningError(f"Error al firmar TRA: {e}") from e


SIGNERS = {
    "openssl": OpenSslCmsSigner,
    "cryptography": CryptographyCmsSigner,
}


def get_signer(name: str = "openssl") -> DocumentSigner:
    """Instancia el firmante por nombre ("openssl" o "cryptography")"""
    try:
        return SIGNERS[name.strip().lower()]()
    except KeyError:
        raise ValueError(f"Firmante desconocido: {name!r}. Opciones: {sorted(SIGNERS)}")
