#!/usr/bin/env python3
"""
CLI AFIP: ticket, último autorizado, emisión, QR, padrón, parámetros y estado.

Credenciales y CUIT desde el entorno (.env): AFIP_CERT/AFIP_KEY o
AFIP_CERT_PATH/AFIP_KEY_PATH, AFIP_CUIT, AFIP_ENVIRONMENT.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, List, Optional

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from afip_minisender import core_issue  # noqa: E402
from app.afip_client.config import (  # noqa: E402
    get_afip_environment,
    get_credentials_from_env,
    get_issuer_cuit_from_env,
)
from app.afip_client.exceptions import (  # noqa: E402
    AfipException,
    AfipFiscalRejectionError,
    AfipTransportError,
)
from app.afip_client.models import VoucherData  # noqa: E402
from app.afip_client.qr_generator import QRGenerator  # noqa: E402
from app.afip_client.signer import SIGNERS, get_signer  # noqa: E402
from app.afip_client.wsaa import WSFE_SERVICE  # noqa: E402

EXIT_ERROR = 1
EXIT_RETRYABLE = 2
EXIT_REJECTED = 3


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), ensure_ascii=False, indent=2, default=str))


def _ticket(args: argparse.Namespace, environment, credentials, service: str = WSFE_SERVICE):
    return core_issue.acquire_ticket(
        service=service,
        credentials=credentials,
        environment=environment,
        signer=get_signer(args.signer),
    )


def cmd_ticket(args: argparse.Namespace) -> int:
    environment = get_afip_environment(args.env)
    ticket = _ticket(args, environment, get_credentials_from_env(), args.service)
    _print_json({
        "service": ticket.service,
        "token": ticket.token,
        "sign": ticket.sign,
        "generation_time": ticket.generation_time,
        "expiration_time": ticket.expiration_time,
    })
    return 0


def cmd_ultimo(args: argparse.Namespace) -> int:
    environment = get_afip_environment(args.env)
    cuit = get_issuer_cuit_from_env()
    ticket = _ticket(args, environment, get_credentials_from_env())
    sequence = core_issue.resolve_next(
        pto_vta=args.pto_vta,
        cbte_tipo=args.tipo,
        ticket=ticket,
        cuit=cuit,
        environment=environment,
    )
    _print_json({
        "punto_venta": sequence.punto_venta,
        "tipo_comprobante": sequence.tipo_comprobante,
        "ultimo_numero": sequence.last_number,
        "ultima_fecha": sequence.last_date,
        "proximo_numero": sequence.next_number,
        "primer_comprobante": sequence.first_voucher,
    })
    return 0


def cmd_emitir(args: argparse.Namespace) -> int:
    data = json.loads(Path(args.json_file).read_text(encoding="utf-8"))
    voucher = VoucherData.from_dict(data)
    environment = get_afip_environment(args.env)
    outcome = core_issue.issue_invoice(
        voucher_data=voucher,
        credentials=get_credentials_from_env(),
        cuit=get_issuer_cuit_from_env(),
        environment=environment,
        signer=get_signer(args.signer),
    )
    _print_json(outcome.to_dict())
    return 0


def cmd_qr(args: argparse.Namespace) -> int:
    qr = QRGenerator().generate(
        fecha=args.fecha,
        cuit=args.cuit,
        pto_vta=args.pto_vta,
        tipo_cmp=args.tipo,
        nro_cmp=args.numero,
        importe=args.importe,
        moneda=args.moneda,
        ctz=args.cotizacion,
        tipo_doc_rec=args.doc_tipo,
        nro_doc_rec=args.doc_nro,
        cod_aut=args.cae,
    )
    _print_json({"url": qr.url, "payload": qr.to_dict()})
    return 0


def cmd_padron(args: argparse.Namespace) -> int:
    taxpayer = core_issue.lookup_taxpayer(
        cuit=args.cuit,
        issuer_cuit=get_issuer_cuit_from_env(),
        credentials=get_credentials_from_env(),
        environment=get_afip_environment(args.env),
        signer=get_signer(args.signer),
    )
    _print_json(taxpayer)
    return 0


def cmd_params(args: argparse.Namespace) -> int:
    environment = get_afip_environment(args.env)
    cuit = get_issuer_cuit_from_env()
    ticket = _ticket(args, environment, get_credentials_from_env())
    if args.kind == "tipos-cbte":
        items = core_issue.tipos_comprobante(ticket=ticket, cuit=cuit, environment=environment)
    elif args.kind == "ptos-venta":
        items = core_issue.puntos_venta(ticket=ticket, cuit=cuit, environment=environment)
    else:
        items = core_issue.condiciones_iva_receptor(
            ticket=ticket, cuit=cuit, environment=environment, clase=args.clase
        )
    _print_json(items)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    environment = get_afip_environment(args.env)
    status = core_issue.server_status(environment=environment)
    _print_json({**environment.describe(), **asdict(status), "ok": status.ok})
    return 0 if status.ok else EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Cliente AFIP WSAA / WSFEv1 / Padrón A5.")
    ap.add_argument("--env", default=None, help="produccion | homologacion (default: AFIP_ENVIRONMENT)")
    ap.add_argument("--signer", default="openssl", choices=sorted(SIGNERS))
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ticket", help="Obtener TA de WSAA")
    p.add_argument("--service", default=WSFE_SERVICE)
    p.set_defaults(func=cmd_ticket)

    p = sub.add_parser("ultimo", help="Último comprobante autorizado")
    p.add_argument("--pto-vta", type=int, required=True)
    p.add_argument("--tipo", type=int, required=True, help="Tipo de comprobante (ej: 6 = Factura B)")
    p.set_defaults(func=cmd_ultimo)

    p = sub.add_parser("emitir", help="Emitir comprobante desde un JSON")
    p.add_argument("json_file", help="Archivo JSON con los campos de VoucherData")
    p.set_defaults(func=cmd_emitir)

    p = sub.add_parser("qr", help="Generar URL QR de un comprobante autorizado")
    p.add_argument("--fecha", required=True, help="YYYYMMDD")
    p.add_argument("--cuit", required=True)
    p.add_argument("--pto-vta", type=int, required=True)
    p.add_argument("--tipo", type=int, required=True)
    p.add_argument("--numero", type=int, required=True)
    p.add_argument("--importe", required=True)
    p.add_argument("--moneda", default="PES")
    p.add_argument("--cotizacion", default="1")
    p.add_argument("--doc-tipo", type=int, default=99)
    p.add_argument("--doc-nro", default="0")
    p.add_argument("--cae", required=True)
    p.set_defaults(func=cmd_qr)

    p = sub.add_parser("padron", help="Consultar contribuyente en Padrón A5")
    p.add_argument("--cuit", required=True)
    p.set_defaults(func=cmd_padron)

    p = sub.add_parser("params", help="Parámetros WSFE")
    p.add_argument("kind", choices=["tipos-cbte", "ptos-venta", "condiciones-iva"])
    p.add_argument("--clase", default=None, help="Clase de comprobante para condiciones-iva (A, B, C, M)")
    p.set_defaults(func=cmd_params)

    p = sub.add_parser("status", help="Estado de WSFE (FEDummy)")
    p.set_defaults(func=cmd_status)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except AfipFiscalRejectionError as e:
        print(f"RECHAZADO: {e.message}", file=sys.stderr)
        _print_json([o.to_dict() for o in e.observations])
        return EXIT_REJECTED
    except AfipTransportError as e:
        print(f"ERROR (reintentable): {e.message}", file=sys.stderr)
        return EXIT_RETRYABLE
    except AfipException as e:
        code = f" [{e.code}]" if e.code else ""
        print(f"ERROR{code}: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except (RuntimeError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
