from flask import Blueprint

registry_bp = Blueprint("registry", __name__, url_prefix="/api/registry")

from app.registry import routes  # noqa: E402,F401
