"""
Request dependencies for FastAPI.

Authentication happens upstream of this service; the gateway forwards the
operator identity in the X-Actor header, which ends up on audit entries.
"""

from typing import Optional
from fastapi import Header

DEFAULT_ACTOR = "operator"


async def get_actor(x_actor: Optional[str] = Header(None, max_length=100)) -> str:
    """
    Identity of whoever triggered the request.

    Returns:
        The forwarded actor name, or "operator" when none was sent
    """
    return x_actor or DEFAULT_ACTOR
