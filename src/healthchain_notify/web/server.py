"""
HTTP API server for HealthChain Notify.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web
from aiohttp.web import Request, Response
from aiohttp_cors import setup as cors_setup, ResourceOptions
from pydantic import ValidationError as PydanticValidationError

from ..core.config import HttpServerConfig
from ..core.models import Channel
from ..database.manager import DatabaseError, DatabaseManager
from ..notifications.delivery import DispatchQueue
from ..notifications.errors import NotificationError, ValidationError
from ..notifications.gateway import RealtimeGateway
from ..notifications.manager import NotificationManager
from ..notifications.providers import ProviderRegistry
from ..notifications.templates import TemplateStore

logger = logging.getLogger(__name__)


class WebServerError(Exception):
    """Web server error."""
    pass


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


class NotificationServer:
    """aiohttp server exposing the notification API and the realtime socket."""

    def __init__(
        self,
        manager: NotificationManager,
        templates: TemplateStore,
        database: DatabaseManager,
        queue: DispatchQueue,
        gateway: RealtimeGateway,
        providers: ProviderRegistry,
        config: Optional[HttpServerConfig] = None,
    ):
        self.manager = manager
        self.templates = templates
        self.database = database
        self.queue = queue
        self.gateway = gateway
        self.providers = providers
        self.config = config or HttpServerConfig()
        self.started_at = datetime.now(timezone.utc)

        self.web_app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        """Create the web application."""
        app = web.Application(middlewares=[self._error_middleware])
        self._add_routes(app)

        cors = cors_setup(app, defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers="*",
                allow_headers="*",
                allow_methods="*"
            )
            for origin in self.config.cors_origins
        })
        for route in list(app.router.routes()):
            if route.resource is not None and route.resource.canonical == "/notifications/ws":
                continue
            cors.add(route)

        return app

    def _add_routes(self, app: web.Application) -> None:
        # The websocket route must be registered before /notifications/{id}
        app.router.add_get('/notifications/ws', self.gateway.handle_websocket)
        app.router.add_post('/notifications', self.send_handler)
        app.router.add_get('/notifications', self.list_handler)
        app.router.add_get('/notifications/{notification_id}', self.detail_handler)
        app.router.add_patch('/notifications/{notification_id}/read', self.mark_read_handler)
        app.router.add_get('/templates', self.templates_handler)
        app.router.add_get('/health', self.health_handler)

    @web.middleware
    async def _error_middleware(self, request: Request, handler):
        """Map the error hierarchy to JSON responses."""
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except NotificationError as e:
            if e.http_status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e}")
            return web.json_response(e.to_dict(), status=e.http_status)
        except PydanticValidationError as e:
            return web.json_response(ValidationError.from_pydantic(e).to_dict(), status=400)
        except DatabaseError as e:
            logger.error(f"Database error on {request.method} {request.path}: {e}")
            return web.json_response(
                {"error": "DatabaseError", "message": "Database operation failed"}, status=500
            )
        except Exception as e:
            logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
            return web.json_response(
                {"error": "InternalError", "message": "Internal server error"}, status=500
            )

    async def _read_json(self, request: Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Request body must be valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    async def send_handler(self, request: Request) -> Response:
        """POST /notifications"""
        data = await self._read_json(request)

        if _truthy(request.query.get('outcomes')):
            outcomes = await self.manager.send_with_outcomes(data)
            return web.json_response({"data": [outcome.to_json() for outcome in outcomes]})

        notifications = await self.manager.send(data)
        return web.json_response([n.to_json() for n in notifications], status=201)

    async def list_handler(self, request: Request) -> Response:
        """GET /notifications?recipientId=&page=&limit="""
        query = {
            key: request.query[key]
            for key in ('recipientId', 'page', 'limit')
            if key in request.query
        }
        page = await self.manager.find_for_recipient(query)
        return web.json_response(page.to_json())

    async def detail_handler(self, request: Request) -> Response:
        """GET /notifications/{id}"""
        notification = await self.manager.get(request.match_info['notification_id'])
        return web.json_response(notification.to_json())

    async def mark_read_handler(self, request: Request) -> Response:
        """PATCH /notifications/{id}/read"""
        result = await self.manager.mark_read(request.match_info['notification_id'])
        return web.json_response({
            "message": result["message"],
            "data": result["data"].to_json(),
        })

    async def templates_handler(self, request: Request) -> Response:
        """GET /templates?channel="""
        channel = None
        if request.query.get('channel'):
            try:
                channel = Channel(request.query['channel'].upper())
            except ValueError as e:
                raise ValidationError(
                    f"Unknown channel: {request.query['channel']}",
                    [{"field": "channel", "message": f"must be one of {', '.join(c.value for c in Channel)}"}],
                ) from e

        templates = await self.templates.list_templates(channel)
        return web.json_response([template.to_json() for template in templates])

    async def health_handler(self, request: Request) -> Response:
        """GET /health"""
        database_ok = await self.database.ping()
        health: Dict[str, Any] = {
            "status": "healthy" if database_ok else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": int((datetime.now(timezone.utc) - self.started_at).total_seconds()),
            "database": {"reachable": database_ok},
            "realtime": self.gateway.get_stats(),
            "providers": self.providers.describe(),
        }
        if database_ok:
            health["queue"] = await self.queue.get_queue_stats()

        return web.json_response(health, status=200 if database_ok else 503)

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start the HTTP server."""
        host = host or self.config.host
        port = port or self.config.port
        try:
            self.web_app = self.create_app()
            self.runner = web.AppRunner(self.web_app)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host, port)
            await self.site.start()

            base_url = f"http://{host}:{port}"
            logger.info(f"Notification API started on {base_url}")
            logger.info(f"  {base_url}/notifications - Send and list notifications")
            logger.info(f"  {base_url}/notifications/ws - Realtime events")
            logger.info(f"  {base_url}/health - Service health")

        except Exception as e:
            logger.error(f"Failed to start notification API: {e}")
            raise WebServerError(f"Failed to start notification API: {e}") from e

    async def stop(self) -> None:
        """Stop the HTTP server."""
        try:
            await self.gateway.close_all()
            if self.site:
                await self.site.stop()
            if self.runner:
                await self.runner.cleanup()
            logger.info("Notification API stopped")
        except Exception as e:
            logger.error(f"Error stopping notification API: {e}")
