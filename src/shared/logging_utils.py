import logging
from typing import Any, Dict, Optional


_LOGGER = logging.getLogger("campaigns")


def log(level: int, tenant_id: Optional[str], message: str, **dimensions: Any) -> None:
    dims: Dict[str, Any] = {"tenantId": tenant_id} if tenant_id else {}
    dims.update({k: v for k, v in dimensions.items() if v is not None})
    _LOGGER.log(level, message, extra={"custom_dimensions": dims})


def info(tenant_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.INFO, tenant_id, message, **dimensions)


def warning(tenant_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.WARNING, tenant_id, message, **dimensions)


def error(tenant_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.ERROR, tenant_id, message, **dimensions)
