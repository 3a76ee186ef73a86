"""Time-windowed nonces for the product-data AJAX action.

Nonces follow the WordPress scheme: the lifetime is split into two ticks
and a nonce stays valid for the tick it was created in plus the next one,
so its real lifetime is between half and the full ``lifetime``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import secrets
import time
from typing import Optional, Union

logger = logging.getLogger(__name__)

ADD_TO_CART_ACTION = "kepixel_add_to_cart_nonce"
DEFAULT_LIFETIME = 86400


class NonceManager:
    def __init__(self, secret: str = "", lifetime: int = DEFAULT_LIFETIME):
        if not secret:
            logger.warning(
                "No nonce secret configured; nonces will not survive a restart"
            )
            secret = secrets.token_hex(32)
        self._secret = secret.encode("utf-8")
        self.lifetime = lifetime

    def tick(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return math.ceil(now / (self.lifetime / 2))

    def _digest(self, tick: int, action: str, user_id: Union[int, str], token: str) -> str:
        message = f"{tick}|{action}|{user_id}|{token}".encode("utf-8")
        digest = hmac.new(self._secret, message, hashlib.sha256).hexdigest()
        return digest[-12:-2]

    def create(
        self,
        action: str = ADD_TO_CART_ACTION,
        token: str = "",
        user_id: Union[int, str] = 0,
        now: Optional[float] = None,
    ) -> str:
        return self._digest(self.tick(now), action, user_id or 0, token)

    def age(
        self,
        nonce: Optional[str],
        action: str = ADD_TO_CART_ACTION,
        token: str = "",
        user_id: Union[int, str] = 0,
        now: Optional[float] = None,
    ) -> int:
        """1 if created this tick, 2 if in the previous tick, 0 if invalid."""
        if not nonce:
            return 0
        tick = self.tick(now)
        for age, candidate_tick in ((1, tick), (2, tick - 1)):
            expected = self._digest(candidate_tick, action, user_id or 0, token)
            if hmac.compare_digest(expected, str(nonce)):
                return age
        return 0

    def verify(
        self,
        nonce: Optional[str],
        action: str = ADD_TO_CART_ACTION,
        token: str = "",
        user_id: Union[int, str] = 0,
        now: Optional[float] = None,
    ) -> bool:
        return self.age(nonce, action, token, user_id, now) > 0
