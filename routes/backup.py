from flask import Blueprint, jsonify
from Form.backup_form import RestoreForm
from service import backup_service
from util.until import api_errors, json_error

backup_bp = Blueprint("backup", __name__, url_prefix="/api/backups")


# Backup gom theo container
@backup_bp.route("", methods=["GET"])
@api_errors
def backup_list():
    return jsonify({"success": True, "backups": backup_service.list_backups_grouped()})


# Quét lại backup trên mọi server
@backup_bp.route("/discover", methods=["POST"])
@api_errors
def discover_backups():
    results = backup_service.discover_backups()
    return jsonify({
        "success": all(r["success"] for r in results),
        "message": "Backup discovery completed",
        "results": results,
    })


@backup_bp.route("/<int:backup_id>", methods=["GET"])
@api_errors
def backup_detail(backup_id):
    return jsonify({"success": True, "backup": backup_service.backup_to_dict(backup_service.get_backup(backup_id))})


# Restore chạy nền qua rq
@backup_bp.route("/<int:backup_id>/restore", methods=["POST"])
@api_errors
def restore_backup(backup_id):
    form = RestoreForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    job_id = backup_service.enqueue_restore(backup_id, form.storage.data or None)
    return jsonify({"success": True, "message": "Restore queued", "job_id": job_id}), 202
