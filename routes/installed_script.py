from flask import Blueprint, jsonify, request
from Form.installed_script_form import InstalledScriptForm, InstalledScriptUpdateForm
from service import container_service, inventory_service
from service.inventory_service import record_to_dict
from util.until import api_errors, json_error

installed_script_bp = Blueprint(
    "installed_script", __name__, url_prefix="/api/installed-scripts"
)


@installed_script_bp.route("", methods=["GET"])
@api_errors
def record_list():
    server_id = request.args.get("server_id", type=int)
    records = inventory_service.list_records(server_id)
    return jsonify({"success": True, "scripts": [record_to_dict(r) for r in records]})


@installed_script_bp.route("", methods=["POST"])
@api_errors
def add_record():
    form = InstalledScriptForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    record = inventory_service.create_record(form.payload())
    return jsonify({"success": True, "script": record_to_dict(record)}), 201


@installed_script_bp.route("/stats", methods=["GET"])
@api_errors
def record_stats():
    return jsonify({"success": True, "stats": inventory_service.installation_stats()})


@installed_script_bp.route("/<int:record_id>", methods=["GET"])
@api_errors
def record_detail(record_id):
    return jsonify({"success": True, "script": record_to_dict(inventory_service.get_record(record_id))})


@installed_script_bp.route("/<int:record_id>", methods=["PUT", "PATCH"])
@api_errors
def edit_record(record_id):
    form = InstalledScriptUpdateForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    record = inventory_service.update_record(record_id, form.payload())
    return jsonify({"success": True, "script": record_to_dict(record)})


@installed_script_bp.route("/<int:record_id>", methods=["DELETE"])
@api_errors
def delete_record(record_id):
    inventory_service.delete_record(record_id)
    return jsonify({"success": True, "message": "Installed script deleted"})


# ---------- Auto-detect / cleanup ----------

@installed_script_bp.route("/auto-detect", methods=["POST"])
@api_errors
def auto_detect_all():
    return jsonify({"success": True, "results": inventory_service.auto_detect_all()})


@installed_script_bp.route("/cleanup", methods=["POST"])
@api_errors
def cleanup_orphans():
    return jsonify(inventory_service.cleanup_orphans())


# ---------- Container actions ----------

@installed_script_bp.route("/statuses", methods=["GET"])
@api_errors
def bulk_statuses():
    server_id = request.args.get("server_id", type=int)
    statuses = container_service.bulk_statuses(server_id)
    return jsonify({"success": True, "statuses": {str(k): v for k, v in statuses.items()}})


@installed_script_bp.route("/<int:record_id>/status", methods=["GET"])
@api_errors
def container_status(record_id):
    return jsonify({"success": True, "status": container_service.container_status(record_id)})


@installed_script_bp.route("/<int:record_id>/start", methods=["POST"])
@api_errors
def start_container(record_id):
    output = container_service.start_container(record_id)
    return jsonify({"success": True, "message": "Container started", "output": output})


@installed_script_bp.route("/<int:record_id>/stop", methods=["POST"])
@api_errors
def stop_container(record_id):
    output = container_service.stop_container(record_id)
    return jsonify({"success": True, "message": "Container stopped", "output": output})


@installed_script_bp.route("/<int:record_id>/destroy", methods=["POST"])
@api_errors
def destroy_container(record_id):
    output = container_service.destroy_container(record_id)
    return jsonify({"success": True, "message": "Container destroyed", "output": output})


@installed_script_bp.route("/<int:record_id>/web-ui-ip", methods=["POST"])
@api_errors
def detect_web_ui_ip(record_id):
    return jsonify({"success": True, **container_service.detect_web_ui_ip(record_id)})


@installed_script_bp.route("/<int:record_id>/backup", methods=["POST"])
@api_errors
def backup_container(record_id):
    data = request.get_json(silent=True) or {}
    job_id = container_service.enqueue_backup(record_id, data.get("storage"))
    return jsonify({"success": True, "message": "Backup queued", "job_id": job_id}), 202
