from flask import Blueprint, jsonify, request
from service import version_service
from util.until import api_errors

version_bp = Blueprint("version", __name__, url_prefix="/api/version")


@version_bp.route("", methods=["GET"])
@api_errors
def current_version():
    return jsonify({"success": True, "version": version_service.current_version()})


@version_bp.route("/status", methods=["GET"])
@api_errors
def version_status():
    return jsonify(version_service.version_status())


# Chạy update.sh ở background, trả về ngay
@version_bp.route("/update", methods=["POST"])
@api_errors
def start_update():
    return jsonify(version_service.start_update()), 202


@version_bp.route("/update/logs", methods=["GET"])
@api_errors
def update_logs():
    offset = max(request.args.get("offset", 0, type=int), 0)
    return jsonify(version_service.read_update_log(offset))
