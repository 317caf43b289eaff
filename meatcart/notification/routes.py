from flask import request

from . import bp
from ..services import notification_service
from ..utils.api import ok, paginate
from ..utils.decorators import current_user, login_required


@bp.get("")
@login_required
def list_notifications():
    unread_only = (request.args.get("unread") or "").lower() == "true"
    q = notification_service.inbox_query(current_user().id, unread_only=unread_only)
    page = paginate(q, lambda n: n.as_api())
    return ok("Notifications fetched", {
        "notifications": page["items"],
        "pagination": page["pagination"],
        "unread_count": notification_service.unread_count(current_user().id),
    })


@bp.get("/unread-count")
@login_required
def unread_count():
    return ok("Unread count", {"unread_count": notification_service.unread_count(current_user().id)})


@bp.patch("/read-all")
@login_required
def mark_all_as_read():
    updated = notification_service.mark_all_as_read(current_user().id)
    return ok("All notifications marked as read", {"updated": updated})


@bp.delete("/clear-all")
@login_required
def clear_all():
    cleared = notification_service.clear_all(current_user().id)
    return ok("All notifications cleared", {"cleared": cleared})


@bp.get("/<int:note_id>")
@login_required
def get_notification(note_id):
    n = notification_service.get_notification(current_user().id, note_id)
    return ok("Notification fetched", {"notification": n.as_api()})


@bp.patch("/<int:note_id>/read")
@login_required
def mark_as_read(note_id):
    n = notification_service.mark_as_read(current_user().id, note_id)
    return ok("Marked as read", {"notification": n.as_api()})


@bp.delete("/<int:note_id>")
@login_required
def delete_notification(note_id):
    notification_service.delete_notification(current_user().id, note_id)
    return ok("Notification deleted")
