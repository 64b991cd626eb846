# app/api/plants/routes.py
import json
import logging
from flask import Blueprint, request, jsonify, current_app, Response, stream_with_context
from marshmallow import ValidationError

from app.core.exceptions import NotFoundError
from app.schemas.plant_schema import PlantProfileSchema, AnalysisRecordSchema
from app.services.analysis_session import AnalysisSessionController, SessionState
from .schemas import PlantCreateSchema, load_environment, load_image_upload

plants_bp = Blueprint('plants_bp', __name__)


@plants_bp.route('/', methods=['POST'])
def create_plant():
    """새 식물 프로필 생성 API."""
    store = current_app.services['history']
    try:
        data = PlantCreateSchema().load(request.get_json(silent=True) or {})
        profile = store.create_profile(data['name'])
        return jsonify(PlantProfileSchema().dump(profile)), 201
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except Exception as e:
        logging.error(f"Plant creation API error: {e}", exc_info=True)
        return jsonify({"error_code": "PLANT_CREATION_FAILED", "message": "식물 프로필 생성 중 오류가 발생했습니다."}), 500


@plants_bp.route('/', methods=['GET'])
def list_plants():
    """등록된 모든 식물 프로필과 분석 이력을 조회합니다."""
    store = current_app.services['history']
    return jsonify(PlantProfileSchema(many=True).dump(store.list_profiles())), 200


@plants_bp.route('/<string:plant_id>', methods=['GET'])
def get_plant(plant_id: str):
    """특정 식물의 프로필과 전체 분석 이력을 조회합니다."""
    store = current_app.services['history']
    try:
        profile = store.get_profile(plant_id)
        return jsonify(PlantProfileSchema().dump(profile)), 200
    except NotFoundError as e:
        return jsonify({"error_code": e.error_code, "message": str(e)}), 404


@plants_bp.route('/<string:plant_id>/analyses/latest', methods=['GET'])
def get_latest_analysis(plant_id: str):
    """가장 최근 분석 기록을 조회합니다."""
    store = current_app.services['history']
    try:
        record = store.most_recent(plant_id)
    except NotFoundError as e:
        return jsonify({"error_code": e.error_code, "message": str(e)}), 404

    if record is None:
        return jsonify({"error_code": "NO_ANALYSIS", "message": "아직 분석 기록이 없습니다."}), 404
    return jsonify(AnalysisRecordSchema().dump(record)), 200


@plants_bp.route('/<string:plant_id>/analyses', methods=['POST'])
def analyze_plant(plant_id: str):
    """
    식물 이미지를 분석합니다. 응답은 text/event-stream 입니다.
    - event: fragment  -> {"text": "..."} (모델 응답 조각, 도착 순서대로)
    - event: result    -> 저장된 분석 기록
    - event: error     -> {"error_code", "message", "detail", "partialText"}
    """
    store = current_app.services['history']
    try:
        store.get_profile(plant_id)
        image, environment = _load_analysis_inputs()
    except NotFoundError as e:
        return jsonify({"error_code": e.error_code, "message": str(e)}), 404
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    controller = _new_controller()
    controller.select_profile(plant_id)
    return _start_streaming(controller, image, environment)


@plants_bp.route('/quick-analysis', methods=['POST'])
def quick_analysis():
    """프로필을 먼저 만들지 않고 바로 분석합니다. 새 식물 프로필이 자동으로 생성됩니다."""
    try:
        image, environment = _load_analysis_inputs()
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    controller = _new_controller()
    profile = controller.create_quick_profile()
    logging.info(f"Quick analysis requested; created plant {profile.id}")
    return _start_streaming(controller, image, environment)


def _load_analysis_inputs():
    image = load_image_upload(request.files.get('image'), current_app.config['MAX_IMAGE_BYTES'])
    environment = load_environment(request.form.get('environment'))
    return image, environment


def _new_controller() -> AnalysisSessionController:
    return AnalysisSessionController(
        store=current_app.services['history'],
        engine=current_app.services['ingestion']
    )


def _start_streaming(controller: AnalysisSessionController, image: bytes, environment) -> Response:
    mime_type = request.files['image'].mimetype
    image_url = current_app.services['storage'].store_image(image, mime_type, controller.active_profile_id)
    controller.select_image(image, image_url, mime_type)
    controller.set_environment(environment)

    def generate():
        fragments = controller.start()
        try:
            for fragment in fragments:
                yield _sse('fragment', {"text": fragment})

            view = controller.snapshot()
            if controller.state is SessionState.SUCCEEDED:
                yield _sse('result', view['result'])
            else:
                yield _sse('error', dict(view['error'], partialText=view['partialText']))
        finally:
            # 클라이언트가 연결을 끊으면 분석도 중단합니다 (저장하지 않음).
            close = getattr(fragments, 'close', None)
            if close:
                close()

    headers = {"X-Plant-Id": controller.active_profile_id, "Cache-Control": "no-cache"}
    return Response(stream_with_context(generate()), mimetype='text/event-stream', headers=headers)


def _sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"
