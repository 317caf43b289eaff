# --- meatcart/utils/api.py ---
from flask import jsonify, request


def api_ok(message, data=None):
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body


def api_error(message, data=None):
    body = {"success": False, "message": message}
    if data is not None:
        body["data"] = data
    return body


# ---- standard API response format ------------------------------------------
def ok(msg, data=None, status=200):
    r = jsonify(api_ok(msg, data)); r.status_code = status; return r


def paginate(q, serialize):
    """
    Query params:
      - page (default 1)
      - limit (default 10, max 100)
    """
    try:
        page = max(int(request.args.get("page", 1)), 1)
        per = min(max(int(request.args.get("limit", 10)), 1), 100)
    except ValueError:
        page, per = 1, 10

    paged = q.paginate(page=page, per_page=per, error_out=False)
    pagination = {
        "current": page,
        "pages": paged.pages,
        "total": paged.total,
        "limit": per,
    }
    if paged.has_prev:
        pagination["prev"] = page - 1
    if paged.has_next:
        pagination["next"] = page + 1
    return {"items": [serialize(x) for x in paged.items], "pagination": pagination}
