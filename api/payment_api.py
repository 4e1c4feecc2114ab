"""
Payment API.

Provides REST endpoints for payment sessions, gateway notifications and
transaction management.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aiohttp import web

from config import ServiceConfig
from services.exceptions import GatewayError, SignatureError, ValidationError
from services.notification_processor import NotificationProcessor
from services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class PaymentAPI:
    """
    REST API for the payment backend.

    Endpoints:
    - POST /api/payment/create-transaction - Create a Snap payment session
    - GET /api/payment/status/{order_id} - Gateway status of an order
    - POST /api/payment/notification - Gateway webhook
    - POST /api/payment/cancel/{order_id} - Cancel a transaction
    - POST /api/payment/refund/{order_id} - Refund a transaction
    - GET /api/payment/methods - Supported payment methods
    - GET /health - Health check
    """

    def __init__(
        self,
        payment_service: PaymentService,
        processor: NotificationProcessor,
        service_config: ServiceConfig
    ):
        """
        Initialize the API.

        Args:
            payment_service: Session and management operations
            processor: Webhook notification processor
            service_config: Service name and environment
        """
        self.payment_service = payment_service
        self.processor = processor
        self.service_config = service_config

    def setup_routes(self, app: web.Application) -> None:
        """
        Set up API routes.

        Args:
            app: aiohttp web application
        """
        app.router.add_post('/api/payment/create-transaction', self.create_transaction)
        app.router.add_get('/api/payment/status/{order_id}', self.get_status)
        app.router.add_post('/api/payment/notification', self.handle_notification)
        app.router.add_post('/api/payment/cancel/{order_id}', self.cancel_transaction)
        app.router.add_post('/api/payment/refund/{order_id}', self.refund_transaction)
        app.router.add_get('/api/payment/methods', self.get_payment_methods)
        app.router.add_get('/health', self.health_check)

    def _failure(
        self,
        message: str,
        status: int,
        error: Optional[Exception] = None
    ) -> web.Response:
        """Build an error response, hiding upstream detail in production."""
        body: Dict[str, Any] = {
            "success": False,
            "message": message
        }
        if error is not None and not self.service_config.is_production:
            detail = getattr(error, 'detail', None)
            body["error"] = f"{error}: {detail}" if detail else str(error)
        return web.json_response(body, status=status)

    async def _json_body(self, request: web.Request) -> Any:
        try:
            return await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON body")

    async def create_transaction(self, request: web.Request) -> web.Response:
        """
        Create a payment session.

        Request body:
        {
            "amount": 150000,
            "customerDetails": {...},
            "itemDetails": [...],
            "customExpiry": {...} (optional)
        }
        """
        try:
            data = await self._json_body(request)
            if not isinstance(data, dict):
                raise ValidationError("Request body must be a JSON object")

            result = await self.payment_service.create_transaction(
                amount=data.get('amount'),
                customer_details=data.get('customerDetails'),
                item_details=data.get('itemDetails'),
                custom_expiry=data.get('customExpiry')
            )
        except ValidationError as e:
            return self._failure(str(e), status=400)
        except GatewayError as e:
            logger.error(f"Create transaction error: {e} ({e.detail})")
            return self._failure("Failed to create transaction", status=500, error=e)

        return web.json_response({
            "success": True,
            "data": result
        })

    async def get_status(self, request: web.Request) -> web.Response:
        """Get the gateway status of an order."""
        order_id = request.match_info['order_id']

        try:
            status = await self.payment_service.get_status(order_id)
        except GatewayError as e:
            logger.error(f"Check status error for {order_id}: {e} ({e.detail})")
            return self._failure("Failed to check transaction status", status=500, error=e)

        return web.json_response({
            "success": True,
            "data": status
        })

    async def handle_notification(self, request: web.Request) -> web.Response:
        """
        Gateway webhook.

        Answers 200 for processed and ignored (duplicate or out-of-order)
        notifications so the gateway stops retrying; 400 only for
        malformed or unauthenticated bodies.
        """
        try:
            data = await self._json_body(request)
            result = await self.processor.process(data, remote=request.remote)
        except SignatureError as e:
            return self._failure(str(e), status=400)
        except ValidationError as e:
            return self._failure(str(e), status=400)
        except Exception as e:
            logger.error(f"Notification error: {e}", exc_info=True)
            return self._failure("Failed to process notification", status=500, error=e)

        message = (
            "Notification processed successfully" if result.applied
            else "Notification acknowledged, no state change"
        )

        return web.json_response({
            "success": True,
            "message": message,
            "data": result.to_dict()
        })

    async def cancel_transaction(self, request: web.Request) -> web.Response:
        """Cancel a transaction."""
        order_id = request.match_info['order_id']

        try:
            response = await self.payment_service.cancel(order_id)
        except GatewayError as e:
            logger.error(f"Cancel transaction error for {order_id}: {e} ({e.detail})")
            return self._failure("Failed to cancel transaction", status=500, error=e)

        return web.json_response({
            "success": True,
            "data": response
        })

    async def refund_transaction(self, request: web.Request) -> web.Response:
        """
        Refund a transaction.

        Request body (all optional):
        {
            "amount": 50000,
            "reason": "Customer request"
        }
        """
        order_id = request.match_info['order_id']

        try:
            data = await self._json_body(request) if request.can_read_body else {}
            if not isinstance(data, dict):
                raise ValidationError("Request body must be a JSON object")

            response = await self.payment_service.refund(
                order_id,
                amount=data.get('amount'),
                reason=data.get('reason')
            )
        except ValidationError as e:
            return self._failure(str(e), status=400)
        except GatewayError as e:
            logger.error(f"Refund error for {order_id}: {e} ({e.detail})")
            return self._failure("Failed to refund transaction", status=500, error=e)

        return web.json_response({
            "success": True,
            "data": response
        })

    async def get_payment_methods(self, request: web.Request) -> web.Response:
        """List supported payment methods."""
        return web.json_response({
            "success": True,
            "data": self.payment_service.payment_methods()
        })

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "success": True,
            "message": f"{self.service_config.name} is running",
            "environment": self.service_config.environment,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })


def create_app(
    payment_service: PaymentService,
    processor: NotificationProcessor,
    service_config: ServiceConfig
) -> web.Application:
    """
    Create and configure the aiohttp web application.

    Args:
        payment_service: Session and management operations
        processor: Webhook notification processor
        service_config: Service name and environment

    Returns:
        Configured aiohttp Application
    """
    app = web.Application()

    # Create API handler
    api = PaymentAPI(
        payment_service=payment_service,
        processor=processor,
        service_config=service_config
    )

    # Setup routes
    api.setup_routes(app)

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request, handler):
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            response = await handler(request)

        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        return response

    app.middlewares.append(cors_middleware)

    # Error handling middleware
    @web.middleware
    async def error_middleware(request, handler):
        try:
            return await handler(request)
        except web.HTTPNotFound:
            return web.json_response(
                {"success": False, "message": "Endpoint not found"},
                status=404
            )
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
            body = {"success": False, "message": "Internal server error"}
            if not service_config.is_production:
                body["error"] = str(e)
            return web.json_response(body, status=500)

    app.middlewares.append(error_middleware)

    return app
