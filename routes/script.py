from flask import Blueprint, jsonify, request
from service import catalog_service, script_downloader
from service.catalog_service import descriptor_to_dict
from util.until import api_errors, json_error, str_to_bool

script_bp = Blueprint("script", __name__, url_prefix="/api/scripts")


@script_bp.route("", methods=["GET"])
@api_errors
def script_list():
    """Card list, lọc theo ?category=&type=&search=&downloaded="""
    cards = catalog_service.list_scripts(
        category_id=request.args.get("category", type=int),
        script_type=request.args.get("type") or None,
        search=request.args.get("search") or None,
        downloaded=str_to_bool(request.args.get("downloaded")),
    )
    return jsonify({"success": True, "scripts": cards, "count": len(cards)})


@script_bp.route("/categories", methods=["GET"])
@api_errors
def category_list():
    return jsonify({"success": True, "categories": catalog_service.list_categories()})


@script_bp.route("/sync", methods=["POST"])
@api_errors
def sync():
    result = catalog_service.sync_catalog()
    if result.get("already_running"):
        return jsonify(result), 409
    if not result.get("success"):
        return jsonify(result), 429 if result.get("rate_limited") else 502
    return jsonify(result)


@script_bp.route("/<slug>", methods=["GET"])
@api_errors
def script_detail(slug):
    return jsonify({"success": True, "script": descriptor_to_dict(catalog_service.get_script(slug))})


@script_bp.route("/<slug>/load", methods=["POST"])
@api_errors
def load_script(slug):
    result = script_downloader.load_script(catalog_service.get_script(slug))
    if not result["success"]:
        return json_error(result["message"], 502)
    return jsonify(result)


@script_bp.route("/<slug>/files", methods=["GET"])
@api_errors
def script_files(slug):
    descriptor = catalog_service.get_script(slug)
    return jsonify({
        "success": True,
        "files": script_downloader.check_exists(descriptor),
        "downloaded": script_downloader.is_downloaded(descriptor),
    })


@script_bp.route("/<slug>/files", methods=["DELETE"])
@api_errors
def delete_files(slug):
    deleted = script_downloader.delete_script(catalog_service.get_script(slug))
    return jsonify({"success": True, "deleted": deleted})


@script_bp.route("/<slug>/compare", methods=["GET"])
@api_errors
def compare(slug):
    result = script_downloader.compare_content(catalog_service.get_script(slug))
    return jsonify({"success": True, **result})


@script_bp.route("/<slug>/diff", methods=["GET"])
@api_errors
def diff(slug):
    file_path = request.args.get("file")
    if not file_path:
        return json_error("file is required", 400)
    text = script_downloader.get_diff(catalog_service.get_script(slug), file_path)
    return jsonify({"success": True, "file": file_path, "diff": text})
