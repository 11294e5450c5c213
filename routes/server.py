from flask import Blueprint, jsonify, request
from Form.backup_form import PBSCredentialForm
from Form.server_form import ServerForm, ServerUpdateForm
from service import backup_service, container_service, inventory_service
from service.backup_service import credential_to_dict
from service.inventory_service import server_to_dict
from util.until import api_errors, json_error, str_to_bool

server_bp = Blueprint("server", __name__, url_prefix="/api/servers")


# Danh sách server
@server_bp.route("", methods=["GET"])
@api_errors
def server_list():
    servers = inventory_service.list_servers()
    return jsonify({"success": True, "servers": [server_to_dict(s) for s in servers]})


# Thêm server
@server_bp.route("", methods=["POST"])
@api_errors
def add_server():
    form = ServerForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    server = inventory_service.create_server(form.payload())
    return jsonify({"success": True, "server": server_to_dict(server)}), 201


# Chi tiết server, ?secrets=true trả kèm password / key để sửa
@server_bp.route("/<int:server_id>", methods=["GET"])
@api_errors
def server_detail(server_id):
    server = inventory_service.get_server(server_id)
    include = str_to_bool(request.args.get("secrets"), False)
    return jsonify({"success": True, "server": server_to_dict(server, include_secrets=include)})


# Sửa server
@server_bp.route("/<int:server_id>", methods=["PUT", "PATCH"])
@api_errors
def edit_server(server_id):
    form = ServerUpdateForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    server = inventory_service.update_server(server_id, form.payload())
    return jsonify({"success": True, "server": server_to_dict(server)})


# Xóa server, record cài đặt giữ lại với server_id = NULL
@server_bp.route("/<int:server_id>", methods=["DELETE"])
@api_errors
def delete_server(server_id):
    inventory_service.delete_server(server_id)
    return jsonify({"success": True, "message": "Server deleted"})


@server_bp.route("/<int:server_id>/test", methods=["POST"])
@api_errors
def test_server(server_id):
    return jsonify(inventory_service.test_server(server_id))


@server_bp.route("/generate-keypair", methods=["POST"])
@api_errors
def generate_keypair():
    return jsonify({"success": True, **inventory_service.generate_keypair()})


@server_bp.route("/<int:server_id>/storages", methods=["GET"])
@api_errors
def server_storages(server_id):
    storages = container_service.list_storages(server_id)
    if str_to_bool(request.args.get("backup_only"), False):
        storages = [s for s in storages if s["supports_backup"]]
    return jsonify({"success": True, "storages": storages})


@server_bp.route("/<int:server_id>/auto-detect", methods=["POST"])
@api_errors
def auto_detect(server_id):
    return jsonify(inventory_service.auto_detect(server_id))


# ---------- PBS credentials ----------

@server_bp.route("/<int:server_id>/pbs-credentials", methods=["GET"])
@api_errors
def pbs_credentials(server_id):
    credentials = backup_service.list_pbs_credentials(server_id)
    return jsonify({"success": True, "credentials": [credential_to_dict(c) for c in credentials]})


@server_bp.route("/<int:server_id>/pbs-credentials/<storage_name>", methods=["GET"])
@api_errors
def pbs_credential_detail(server_id, storage_name):
    credential = backup_service.get_pbs_credential(server_id, storage_name)
    return jsonify({"success": True, "credential": credential_to_dict(credential)})


@server_bp.route("/<int:server_id>/pbs-credentials/<storage_name>", methods=["PUT"])
@api_errors
def save_pbs_credential(server_id, storage_name):
    form = PBSCredentialForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    credential = backup_service.save_pbs_credential(server_id, storage_name, form.data)
    return jsonify({
        "success": True,
        "message": "PBS credentials saved",
        "credential": credential_to_dict(credential),
    })


@server_bp.route("/<int:server_id>/pbs-credentials/<storage_name>", methods=["DELETE"])
@api_errors
def delete_pbs_credential(server_id, storage_name):
    backup_service.delete_pbs_credential(server_id, storage_name)
    return jsonify({"success": True, "message": "PBS credentials deleted"})
