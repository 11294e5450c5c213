from flask import Blueprint, jsonify, request
from Form.repository_form import RepositoryForm, RepositoryUpdateForm
from service import repository_service
from service.repository_service import repository_to_dict
from util.until import api_errors, json_error, str_to_bool

repository_bp = Blueprint("repository", __name__, url_prefix="/api/repositories")


@repository_bp.route("", methods=["GET"])
@api_errors
def repository_list():
    enabled_only = str_to_bool(request.args.get("enabled"), False)
    repos = repository_service.list_repositories(enabled_only=enabled_only)
    return jsonify({"success": True, "repositories": [repository_to_dict(r) for r in repos]})


@repository_bp.route("", methods=["POST"])
@api_errors
def add_repository():
    form = RepositoryForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    repo = repository_service.create_repository(form.payload())
    return jsonify({"success": True, "repository": repository_to_dict(repo)}), 201


@repository_bp.route("/<int:repo_id>", methods=["PUT", "PATCH"])
@api_errors
def edit_repository(repo_id):
    form = RepositoryUpdateForm()
    if not form.validate():
        return json_error(form.first_error(), 400)
    repo = repository_service.update_repository(repo_id, form.payload())
    return jsonify({"success": True, "repository": repository_to_dict(repo)})


@repository_bp.route("/<int:repo_id>", methods=["DELETE"])
@api_errors
def delete_repository(repo_id):
    repository_service.delete_repository(repo_id)
    return jsonify({"success": True, "message": "Repository deleted"})
