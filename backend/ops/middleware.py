"""
Request scope middleware.

Gives every request its own NotificationCenter (request.notifications) and
OperationScope (request.operations). When the response is ready, pending
operations are cancelled and the request's notifications are returned to
the client as a JSON list in the X-Notifications header.
"""
import json

from ops.notifications import NotificationCenter, log_notification
from ops.operations import OperationScope

NOTIFICATIONS_HEADER = "X-Notifications"


class RequestScopeMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        notifications = NotificationCenter()
        unsubscribe = notifications.subscribe(log_notification)
        request.notifications = notifications
        request.operations = OperationScope(notifications)

        try:
            response = self.get_response(request)
        finally:
            request.operations.close()
            unsubscribe()

        pending = notifications.drain()
        if pending:
            response[NOTIFICATIONS_HEADER] = json.dumps([n.to_dict() for n in pending])
        return response
