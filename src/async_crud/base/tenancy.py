# src/async_crud/base/tenancy.py
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

TENANT_HEADER = "X-TenantId"


@dataclass(frozen=True)
class TenantContext:
    """
    The caller's tenant and user for the lifetime of one command.

    A ``tenant_id`` of None means an unscoped context: reads see every
    tenant's rows and writes leave ``tenant_id`` as supplied.
    """

    tenant_id: Optional[uuid.UUID] = None
    user_id: Optional[str] = None

    @property
    def is_scoped(self) -> bool:
        return self.tenant_id is not None

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str], user_id: Optional[str] = None
    ) -> "TenantContext":
        """
        Build a context from request headers.

        The ``X-TenantId`` header is matched case-insensitively. A missing or
        empty header gives an unscoped context.

        Raises:
            ValueError: If the header is not a valid UUID.
        """
        value = None
        for name, header_value in headers.items():
            if name.lower() == TENANT_HEADER.lower():
                value = header_value
                break
        if value is None or not str(value).strip():
            return cls(tenant_id=None, user_id=user_id)
        try:
            tenant_id = uuid.UUID(str(value).strip())
        except ValueError as e:
            raise ValueError(f"Invalid {TENANT_HEADER} header: {value!r}") from e
        return cls(tenant_id=tenant_id, user_id=user_id)
