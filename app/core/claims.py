# top2000_auth/app/core/claims.py
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
import threading
import uuid


def utc_now() -> datetime:
    """Relógio de parede em UTC naive, como todas as datas gravadas no banco."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NonDecreasingClock:
    """
    Relógio do processo: nunca devolve um instante anterior ao último devolvido.

    Ajustes do relógio de parede (NTP, etc.) para trás ficam presos no último
    valor até o relógio real alcançá-lo, então `iat` nunca regride.
    """

    def __init__(self, source: Callable[[], datetime] = utc_now) -> None:
        self._source = source
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._source()
            if self._last is not None and now < self._last:
                now = self._last
            self._last = now
            return now


system_clock = NonDecreasingClock()


@dataclass(frozen=True)
class Claims:
    """Conjunto estruturado de claims de um access token."""
    subject: str
    email: str
    roles: Tuple[str, ...]
    token_id: str
    issued_at: datetime
    expires_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sub": self.subject,
            "email": self.email,
            "roles": list(self.roles),
            "jti": self.token_id,
            "iat": self.issued_at,
            "exp": self.expires_at,
        }


def build_claims(
    user_id: int | str,
    email: str,
    roles: Iterable[str],
    *,
    lifetime: timedelta,
    clock: Callable[[], datetime] = system_clock,
    token_id: Optional[str] = None,
) -> Claims:
    """
    Monta as claims de um usuário.

    Roles são deduplicadas mantendo a ordem da primeira ocorrência.
    `user_id` vazio é violação de contrato e levanta ValueError.
    """
    subject = str(user_id).strip() if user_id is not None else ""
    if not subject:
        raise ValueError("subject id must not be empty")
    if lifetime <= timedelta(0):
        raise ValueError("lifetime must be positive")

    unique_roles: list[str] = []
    for role in roles or ():
        if role and role not in unique_roles:
            unique_roles.append(role)

    now = clock()
    return Claims(
        subject=subject,
        email=email,
        roles=tuple(unique_roles),
        token_id=token_id or uuid.uuid4().hex,
        issued_at=now,
        expires_at=now + lifetime,
    )
