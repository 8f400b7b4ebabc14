from __future__ import annotations

import ssl
from typing import Any, Dict, List, Optional, Tuple

from ...config import KafkaConfig


def security_kwargs(cfg: KafkaConfig) -> Dict[str, Any]:
    """TLS/SASL keyword arguments shared by AIOKafkaProducer and AIOKafkaConsumer."""
    use_tls = cfg.tls.enable
    use_sasl = bool(cfg.sasl.mechanism)
    if use_tls:
        security_protocol = "SASL_SSL" if use_sasl else "SSL"
    else:
        security_protocol = "SASL_PLAINTEXT" if use_sasl else "PLAINTEXT"

    ssl_context = None
    if use_tls:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        if cfg.tls.verify:
            ctx.verify_mode = ssl.CERT_REQUIRED
            if cfg.tls.ca_location:
                ctx.load_verify_locations(cafile=cfg.tls.ca_location)
            else:
                ctx.load_default_certs()
        else:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        if cfg.tls.certificate and cfg.tls.key:
            ctx.load_cert_chain(certfile=cfg.tls.certificate, keyfile=cfg.tls.key)
        ssl_context = ctx

    kwargs: Dict[str, Any] = {
        "security_protocol": security_protocol,
        "ssl_context": ssl_context,
    }
    if use_sasl:
        kwargs.update(
            sasl_mechanism=cfg.sasl.mechanism,
            sasl_plain_username=cfg.sasl.username,
            sasl_plain_password=cfg.sasl.password,
        )
    return kwargs


def producer_acks(value: str) -> Any:
    return int(value) if value.lstrip("-").isdigit() else value


def from_headers(raw: Optional[List[Tuple[str, bytes]]]) -> Dict[str, bytes]:
    headers: Dict[str, bytes] = {}
    if not raw:
        return headers
    for k, v in raw:
        headers[k] = v
    return headers


def to_headers(headers: Dict[str, bytes]) -> List[Tuple[str, bytes]]:
    return [(k, v) for k, v in headers.items()]
