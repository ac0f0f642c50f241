"""
ASGI config for the lorabridge service.

It exposes the ASGI callable as a module-level variable named ``application``.
The lifespan wrapper rebuilds application server subscriptions on startup and
stops every adapter on shutdown.
"""

import logging
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "lorabridge.settings")

django_asgi_app = get_asgi_application()

from apps.services.bootstrap import agent  # noqa: E402

logger = logging.getLogger(__name__)


class LifespanApplication:
    """Intercepts ``lifespan`` scopes and passes HTTP traffic through to Django."""

    def __init__(self, app, bootstrap=None):
        self.app = app
        self._bootstrap = bootstrap or agent
        self._started = False

    async def __call__(self, scope, receive, send):
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        await self.app(scope, receive, send)

    async def _handle_lifespan(self, receive, send):
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                if not self._started:
                    try:
                        await self._bootstrap.startup()
                        self._started = True
                    except Exception as exc:
                        logger.exception("Agent bootstrap failed.")
                        # Adapters created before the failure must not keep their connections.
                        await self._bootstrap.shutdown()
                        await send({"type": "lifespan.startup.failed", "message": str(exc)})
                        return
                await send({"type": "lifespan.startup.complete"})
                continue

            if message["type"] == "lifespan.shutdown":
                try:
                    if self._started:
                        await self._bootstrap.shutdown()
                except Exception as exc:
                    logger.exception("Agent shutdown failed.")
                    await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return
            logger.warning("Unknown lifespan message: %s", message.get("type"))


application = LifespanApplication(django_asgi_app)
