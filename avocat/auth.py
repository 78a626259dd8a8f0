"""
Request identity.

Authentication happens upstream; the gateway forwards the verified uid in the
``X-User-Id`` header.
"""
from functools import wraps

from flask import g, jsonify, request

from .services import get_services

USER_HEADER = "X-User-Id"


def current_user_id():
    return request.headers.get(USER_HEADER, "").strip() or None


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        uid = current_user_id()
        if not uid:
            return jsonify({"error": "unauthorized"}), 401
        g.user_id = uid
        g.is_admin = get_services().users.is_admin(uid)
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not g.is_admin:
            return jsonify({"error": "Acceso denegado. Se requieren permisos de administrador."}), 403
        return f(*args, **kwargs)
    return decorated


def can_access(owner_id):
    return g.is_admin or owner_id == g.user_id
