"""
Request-scoped dependencies shared by the routers.
"""

from typing import Optional
from fastapi import Header


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, description="Staff member performing the action")
) -> Optional[str]:
    """Actor recorded on every mutation; authentication happens upstream."""
    return x_actor_id
