"""
Notification Blueprint.

Routes:
  GET    /notifications                 – the acting user's notifications (?unread_only=true)
  GET    /notifications/unread-count    – badge count
  PATCH  /notifications/<id>/read       – mark one as read
  POST   /notifications/mark-all-read   – mark all as read
"""

from flask import Blueprint, jsonify, request

from resourcing.auth import require_actor
from resourcing.blueprints import current_actor, page_args
from resourcing.core.exceptions import NotFoundError
from resourcing.services.notification import NotificationService

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@require_actor
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit, offset = page_args()
    items, total = NotificationService.list_for_recipient(
        current_actor().user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total,
                    "limit": limit, "offset": offset})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_actor
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor().user_id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
@require_actor
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_actor().user_id)
    if notif is None:
        raise NotFoundError("Notification", resource_id=notification_id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
@require_actor
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().user_id)
    return jsonify({"marked_read": count})
